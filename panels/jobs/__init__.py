"""
Background jobs module.
"""

from panels.jobs.change_propagation_worker import ChangePropagationWorker

__all__ = [
    "ChangePropagationWorker",
]
