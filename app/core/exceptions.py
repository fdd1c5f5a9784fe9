"""
Platform-wide exception hierarchy.

Every service raises one of these types. Blueprints register handlers
against them once and get consistent HTTP status codes everywhere; the
services never build responses themselves.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkProposal", resource_id=42)
    raise ValidationError("approval_number is required", field="approval_number")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "WorkProposal", "City").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        field: The offending field, when a single field is at fault.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, field: str | None = None, details: dict | None = None) -> None:
        self.field = field
        self.details = details or {}
        if field and field not in self.details:
            self.details[field] = message
        super().__init__(message)


class InvalidStateError(Exception):
    """Raised when an operation is not allowed from the proposal's current status.

    Maps to HTTP 409.

    Args:
        action: The lifecycle operation that was attempted.
        expected: Statuses from which the operation is allowed.
        actual: The status the proposal is actually in.
        reason: Optional extra explanation (e.g. "tender not required").
    """

    def __init__(
        self,
        action: str,
        expected: list[str] | tuple[str, ...] | frozenset,
        actual: str | None,
        reason: str | None = None,
    ) -> None:
        self.action = action
        self.expected = sorted(expected)
        self.actual = actual
        self.reason = reason
        msg = f"Cannot '{action}' from status '{actual}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique value.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    retryable = False

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class VersionConflictError(ConflictError):
    """Raised when another writer changed the proposal since it was read.

    The caller may re-read the proposal and retry the operation.
    """

    retryable = True

    def __init__(self, resource: str, resource_id: int | str, expected: int | None = None,
                 actual: int | None = None) -> None:
        super().__init__(resource, "version", None if actual is None else str(actual))
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        self.args = (f"{resource} id={resource_id} was modified concurrently; reload and retry",)


class ReferenceInUseError(ConflictError):
    """Raised when a lookup row cannot be deleted because proposals use it."""

    def __init__(self, resource: str, resource_id: int, proposal_ids: list[int]) -> None:
        super().__init__(resource, "id", str(resource_id))
        self.resource_id = resource_id
        self.proposal_ids = proposal_ids
        self.args = (
            f"Cannot delete {resource} id={resource_id}: it is used by "
            f"{len(proposal_ids)} work proposal(s)",
        )


class StorageError(Exception):
    """Raised when the persistence layer fails for a non-business reason.

    Maps to HTTP 503. Callers may retry at their discretion.
    """
