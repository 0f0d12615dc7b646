"""
Service-wide exception hierarchy.

Every service and the recalculation engine raise these types; the schedule
blueprint registers one handler per type and maps them to HTTP status codes.

    NotFoundError            → 404  unknown project / schedule item / alert
    ValidationError          → 422  well-formed input that breaks a rule
      InvalidDurationError   → 422  non-positive duration
    ConflictError            → 409  duplicate unique key
    IntegrityViolationError  → 409  would write end_date < start_date or a
                                    duplicate (project, step) row
    PersistenceError         → 500  store read/write failure

Every error aborts the whole batch of the operation that raised it; nothing
is retried by the services.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ScheduleItem", resource_id=42)
    raise ValidationError("start_date is invalid", details={"start_date": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "ScheduleItem").
        resource_id: The key that was looked up. Included in logs and message.
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

    Distinct from HTTP 400 (malformed input, caught in blueprint): the data
    was well-formed but violated a business rule (invalid status transition,
    unknown canonical step).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidDurationError(ValidationError):
    """Raised when a duration is not a positive number of business days."""

    def __init__(self, value, field: str = "actual_days") -> None:
        self.value = value
        self.field = field
        super().__init__(
            f"{field} must be a positive number of business days, got {value!r}",
            details={field: "must be >= 1"},
        )


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class IntegrityViolationError(ConflictError):
    """Raised before any write when a computed schedule would break an invariant."""

    def __init__(self, message: str) -> None:
        self.resource = "ScheduleItem"
        self.field = None
        self.value = None
        Exception.__init__(self, message)


class PersistenceError(Exception):
    """Raised when the schedule store fails to read or write.

    The original driver error is chained (``raise ... from exc``) and its
    message is surfaced verbatim.
    """
