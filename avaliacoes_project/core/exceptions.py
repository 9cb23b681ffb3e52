"""
Error taxonomy shared by every service.

Where Django already has the right exception we reuse it, so views
and the admin treat these errors the same way as Django's own.
"""

from django.core.exceptions import (
    ImproperlyConfigured,
    ObjectDoesNotExist,
    PermissionDenied,
    ValidationError,
)

__all__ = [
    "ConflictError",
    "FatalConfigError",
    "NotFoundError",
    "PermissionDenied",
    "TransientDeliveryError",
    "ValidationError",
]


class ConflictError(Exception):
    """
    Uniqueness, window or overlap violation.

    `conflicts` holds the conflicting entities as plain dicts so callers
    can show the user exactly what is in the way.
    """

    def __init__(self, message, conflicts=None):
        super().__init__(message)
        self.message = message
        self.conflicts = list(conflicts or [])


class NotFoundError(ObjectDoesNotExist):
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class TransientDeliveryError(Exception):
    """A mail send that failed but may succeed on a later attempt."""


class FatalConfigError(ImproperlyConfigured):
    """Invalid scheduler or urgency configuration. Never applied."""
