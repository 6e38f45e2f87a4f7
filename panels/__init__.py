"""
Panels change-tracking backend.

Records structural Panel changes, classifies their impact on published
Views and delivers acknowledgeable View notifications.
"""

__version__ = "0.1.0"
