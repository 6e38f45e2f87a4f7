"""
Error taxonomy for the change tracking engine.

Services raise these synchronously; the HTTP layer maps them to status
codes (NotFoundError -> 404, ValidationError -> 400, ConflictError -> 409).
"""


class PanelsError(Exception):
    """Base exception for panel change tracking errors."""

    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
        }


class NotFoundError(PanelsError):
    """Referenced Panel/View/Column/PanelChange is absent or outside the caller's tenant."""

    http_status = 404


class ValidationError(PanelsError):
    """Malformed input: inconsistent change type/column, bad pagination, broken model rule."""

    http_status = 400


class InvalidTransitionError(ValidationError):
    """Notification status transition not allowed by the acknowledgment workflow."""


class ConflictError(PanelsError):
    """
    Idempotency violation detected despite the dedup check.

    Indicates a concurrent writer or a bug. The notifier logs it and
    recovers; it is not a user error.
    """

    http_status = 409
