"""Exception hierarchy for Fieldward.

Every error the core raises on purpose derives from FieldwardError so
callers can map them to transport responses in one place. Storage
failures are wrapped in StorageError with the original exception chained.
"""


class FieldwardError(Exception):
    """Base class for all Fieldward errors."""

    pass


class ValidationError(FieldwardError):
    """Request shape is invalid (bad id, unknown filter field, bad payload)."""

    pass


class RLSValidationError(ValidationError):
    """A query that required row-level security ran without it."""

    def __init__(self, resource: str, role: str | None = None):
        self.resource = resource
        self.role = role
        super().__init__(
            f"Row-level security was not applied to query on '{resource}'"
        )


class NotFoundError(FieldwardError):
    """The record does not exist or is not visible to the caller."""

    pass


class PermissionDeniedError(FieldwardError):
    """The caller's role does not satisfy the required access level."""

    pass


class ProtectedResourceError(FieldwardError):
    """The record is system protected and cannot be deleted or changed."""

    pass


class HookAbortError(FieldwardError):
    """Raised by a before-delete hook to veto the operation."""

    def __init__(self, message: str, hook_name: str | None = None):
        self.hook_name = hook_name
        super().__init__(message)


class StorageError(FieldwardError):
    """The underlying database raised an error."""

    pass
