# API routes
from panels.api.routes import panel_changes
from panels.api.routes import view_notifications

__all__ = ["panel_changes", "view_notifications"]
