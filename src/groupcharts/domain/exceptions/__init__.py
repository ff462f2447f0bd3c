"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is kept as an attribute so handlers never parse str(exc).
    # Don't raise this directly - use a specific subclass so callers (and the API handlers) can
    # map it to the right status code.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    # Yo, entity_type and entity_id stay separate so handlers can log them structured.
    # "Group abc not found", "ChartEntry for slug xyz not found", etc.
    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when input or entity validation fails.

    HTTP Status: 422
    """

    pass


class InvalidStateException(DomainException):
    """Raised when an entity is in an invalid state for the requested operation.

    Example: charting a week that has not finished yet.

    HTTP Status: 409
    """

    pass


class DuplicateEntityException(DomainException):
    """Raised when trying to create a duplicate entity."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} already exists")
        self.entity_type = entity_type
        self.entity_id = entity_id


class BusinessRuleViolation(DomainException):
    """A business rule was violated.

    HTTP Status: 400

    Example:
        raise BusinessRuleViolation("Members cannot reject their own group")
    """

    pass


class AuthorizationError(DomainException):
    """User is known but not allowed to perform this action.

    HTTP Status: 403

    Example:
        raise AuthorizationError("Only the group owner can change chart settings")
    """

    pass


# =============================================================================
# Chart specific validation errors
# Hey future me - both are ValidationException subclasses, so the API maps them
# to 422 without extra handlers. They are raised BEFORE any computation starts.
# =============================================================================


class UnsupportedChartTypeError(ValidationException):
    """Requested chart type is not one of artists/tracks/albums."""

    def __init__(self, chart_type: Any) -> None:
        super().__init__(f"Unsupported chart type: {chart_type}")
        self.chart_type = chart_type


class UnsupportedRecordTypeError(ValidationException):
    """Requested record type has no leaderboard definition."""

    def __init__(self, record_type: Any) -> None:
        super().__init__(f"Unsupported record type: {record_type}")
        self.record_type = record_type


class StatsRecomputeError(DomainException):
    """Recomputing the cached stats for one entry failed.

    Raised per entry key; batch recompute catches it and moves on.
    """

    def __init__(self, entry_key: str, reason: str) -> None:
        super().__init__(f"Stats recompute failed for {entry_key}: {reason}")
        self.entry_key = entry_key
        self.reason = reason
