"""
Domain errors raised by the load matching core.

Callers see ValidationError, NotFoundError, InvalidStateError and
ConcurrencyConflict. AdvisoryFailure is raised by advisor adapters and is
always absorbed by the engines.
"""

from typing import Any, Optional


class LoadMatchError(Exception):
    """Base class for all domain errors."""

    retryable = False


class ValidationError(LoadMatchError):
    """Input violates one or more domain rules. Fix the input; do not retry."""

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(LoadMatchError):
    """A load, driver, match or pricing calculation id is unknown."""

    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidStateError(LoadMatchError):
    """The requested operation is not allowed from the entity's current status."""

    def __init__(
        self,
        entity: str,
        current: Any,
        requested: Optional[Any] = None,
        message: Optional[str] = None,
    ) -> None:
        self.entity = entity
        self.current = current
        self.requested = requested
        if message is None:
            if requested is None:
                message = f"{entity} in status {current} does not allow this operation"
            else:
                message = f"{entity} cannot move from {current} to {requested}"
        super().__init__(message)


class AdvisoryFailure(LoadMatchError):
    """The external advisor failed, timed out or returned something unusable."""


class ConcurrencyConflict(LoadMatchError):
    """Another request already owns the load or driver. Safe to retry later."""

    retryable = True

    def __init__(self, message: str, load_id: Optional[str] = None, driver_id: Optional[str] = None) -> None:
        self.load_id = load_id
        self.driver_id = driver_id
        super().__init__(message)
