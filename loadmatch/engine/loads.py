"""
Load Service - validation and lifecycle of loads.
"""

import random
from datetime import datetime
from typing import Callable, Optional

import structlog

from loadmatch.core.clock import ensure_utc, utc_now
from loadmatch.core.errors import InvalidStateError, LoadMatchError, NotFoundError, ValidationError
from loadmatch.core.locks import KeyedLock, driver_key, load_key
from loadmatch.core.logs import get_logger
from loadmatch.data.models import Load, LoadStatus, Location, Match, MatchStatus
from loadmatch.data.models.match import ACTIVE_MATCH_STATUSES, PENDING_MATCH_STATUSES
from loadmatch.data.stores import LoadStore, MatchStore

NON_CANCELLABLE_STATUSES = frozenset(
    {
        LoadStatus.IN_TRANSIT,
        LoadStatus.DELIVERED,
        LoadStatus.COMPLETED,
        LoadStatus.CANCELLED,
        LoadStatus.EXPIRED,
    }
)
EDITABLE_STATUSES = frozenset({LoadStatus.DRAFT, LoadStatus.PUBLISHED})
TERMINAL_STATUSES = frozenset({LoadStatus.COMPLETED, LoadStatus.CANCELLED, LoadStatus.EXPIRED})
OPEN_MATCH_STATUSES = ACTIVE_MATCH_STATUSES | PENDING_MATCH_STATUSES


def generate_load_code(now: Optional[datetime] = None) -> str:
    """Build a human-facing load code like LD202501011200001234."""
    now = now or utc_now()
    return f"LD{now:%Y%m%d%H%M%S}{random.randint(1000, 9999)}"


class LoadStateMachine:
    """Allowed load status transitions."""

    ALLOWED_TRANSITIONS: dict[LoadStatus, list[LoadStatus]] = {
        LoadStatus.DRAFT: [LoadStatus.PUBLISHED, LoadStatus.CANCELLED],
        LoadStatus.PUBLISHED: [
            LoadStatus.MATCHED,
            LoadStatus.DRIVER_ACCEPTED,
            LoadStatus.CANCELLED,
            LoadStatus.EXPIRED,
        ],
        LoadStatus.MATCHED: [LoadStatus.DRIVER_ACCEPTED, LoadStatus.PUBLISHED, LoadStatus.CANCELLED],
        LoadStatus.DRIVER_ACCEPTED: [LoadStatus.PICKED_UP, LoadStatus.PUBLISHED, LoadStatus.CANCELLED],
        LoadStatus.PICKED_UP: [LoadStatus.IN_TRANSIT, LoadStatus.CANCELLED],
        LoadStatus.IN_TRANSIT: [LoadStatus.DELIVERED],
        LoadStatus.DELIVERED: [LoadStatus.COMPLETED],
        LoadStatus.COMPLETED: [],
        LoadStatus.CANCELLED: [],
        LoadStatus.EXPIRED: [],
    }

    @classmethod
    def can_transition(cls, current: LoadStatus, target: LoadStatus) -> bool:
        return target in cls.ALLOWED_TRANSITIONS.get(current, [])

    @classmethod
    def validate_transition(cls, current: LoadStatus, target: LoadStatus) -> None:
        if not cls.can_transition(current, target):
            raise InvalidStateError("Load", current.value, target.value)


class LoadService:
    """
    Creates, edits, publishes and cancels loads.

    Publishing prices the load through the pricing ledger when it has no
    fixed price. A pricing failure never blocks publishing.
    """

    def __init__(
        self,
        load_store: LoadStore,
        ledger=None,
        match_store: Optional[MatchStore] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the load service.

        Args:
            load_store: Where loads live
            ledger: Optional PricingLedger used to price loads on publish
            match_store: Optional match store; cancelling a load closes its matches
            locks: Lock registry shared with the match orchestrator
            clock: Source of the current time
            logger: Optional structured logger
        """
        self.load_store = load_store
        self.ledger = ledger
        self.match_store = match_store
        self.locks = locks or KeyedLock()
        self.clock = clock
        self.logger = get_logger("load_service", logger)

    def create_load(self, load: Load, created_by: Optional[str] = None) -> Load:
        """
        Validate and store a new draft load.

        Raises:
            ValidationError: Listing every violated rule
        """
        self._validate(load)
        if self.load_store.get_by_id(load.load_id) is not None:
            raise ValidationError(f"Load already exists: {load.load_id}")

        now = self.clock()
        load.load_code = load.load_code or generate_load_code(now)
        load.status = LoadStatus.DRAFT
        load.created_at = now
        load.created_by = created_by
        load.updated_by = created_by
        self.load_store.save(load)

        self.logger.info(
            "load_created",
            load_id=load.load_id,
            load_code=load.load_code,
            stops=len(load.stops),
            distance_km=load.total_distance_km,
        )
        return load

    def update_load(self, load: Load, updated_by: Optional[str] = None) -> Load:
        """
        Replace an editable load with a re-validated version.

        Status, code and creation metadata are kept from the stored load.

        Raises:
            NotFoundError: If the load does not exist
            InvalidStateError: If the load is past Published
            ValidationError: Listing every violated rule
        """
        existing = self.get_load(load.load_id)
        if existing.status not in EDITABLE_STATUSES:
            raise InvalidStateError(
                "Load", existing.status.value, message=f"Load in status {existing.status.value} cannot be edited"
            )
        self._validate(load)

        load.status = existing.status
        load.load_code = existing.load_code
        load.created_at = existing.created_at
        load.created_by = existing.created_by
        load.published_at = existing.published_at
        load.updated_by = updated_by
        self.load_store.save(load)

        self.logger.info("load_updated", load_id=load.load_id, updated_by=updated_by)
        return load

    def publish_load(self, load_id: str, published_by: Optional[str] = None) -> Load:
        """
        Publish a draft load, pricing it first if it has no fixed price.

        Raises:
            NotFoundError: If the load does not exist
            InvalidStateError: If the load is not a draft
            ValidationError: If the load no longer passes validation
        """
        load = self.get_load(load_id)
        if load.status != LoadStatus.DRAFT:
            raise InvalidStateError("Load", load.status.value, LoadStatus.PUBLISHED.value)
        self._validate(load)

        if load.fixed_price is None and self.ledger is not None:
            try:
                calculation = self.ledger.quote_load(load)
                load.fixed_price = calculation.calculated_price
            except LoadMatchError as e:
                self.logger.error("load_pricing_failed", load_id=load_id, error=str(e))

        load.status = LoadStatus.PUBLISHED
        load.published_at = self.clock()
        load.updated_by = published_by
        self.load_store.save(load)

        self.logger.info(
            "load_published",
            load_id=load_id,
            fixed_price=str(load.fixed_price) if load.fixed_price is not None else None,
            published_by=published_by,
        )
        return load

    def cancel_load(self, load_id: str, reason: str, cancelled_by: Optional[str] = None) -> Load:
        """
        Cancel a load that has not yet gone on the road.

        Every pending or active match on the load is cancelled with it, so
        its driver is free to be matched again.

        Raises:
            NotFoundError: If the load does not exist
            InvalidStateError: If the load is in transit, delivered or already closed
        """
        while True:
            active = self._active_match(load_id)
            keys = [load_key(load_id)]
            if active is not None:
                keys.append(driver_key(active.driver_id))
            with self.locks.hold(*keys):
                current = self._active_match(load_id)
                if current is not None and (active is None or current.match_id != active.match_id):
                    # Another driver accepted meanwhile; retry holding their lock
                    continue
                return self._cancel(load_id, reason, cancelled_by)

    def _cancel(self, load_id: str, reason: str, cancelled_by: Optional[str]) -> Load:
        load = self.get_load(load_id)
        if load.status in NON_CANCELLABLE_STATUSES:
            raise InvalidStateError("Load", load.status.value, LoadStatus.CANCELLED.value)

        now = self.clock()
        load.status = LoadStatus.CANCELLED
        load.cancelled_at = now
        load.cancellation_reason = reason
        load.updated_by = cancelled_by
        self.load_store.save(load)

        closed = []
        if self.match_store is not None:
            for match in self.match_store.get_for_load(load_id):
                if match.status not in OPEN_MATCH_STATUSES:
                    continue
                match.status = MatchStatus.CANCELLED
                match.cancelled_at = now
                match.cancellation_reason = f"Load cancelled: {reason}"
                match.updated_by = cancelled_by
                self.match_store.save(match)
                closed.append(match.match_id)

        self.logger.info(
            "load_cancelled",
            load_id=load_id,
            reason=reason,
            cancelled_by=cancelled_by,
            matches_cancelled=closed,
        )
        return load

    def _active_match(self, load_id: str) -> Optional[Match]:
        if self.match_store is None:
            return None
        return self.match_store.get_active_by_load(load_id)

    def update_status(self, load_id: str, status: LoadStatus, updated_by: Optional[str] = None) -> Load:
        """
        Move a load along its lifecycle.

        Raises:
            NotFoundError: If the load does not exist
            InvalidStateError: If the transition is not allowed
        """
        load = self.get_load(load_id)
        if load.status == status:
            return load
        LoadStateMachine.validate_transition(load.status, status)

        if status == LoadStatus.COMPLETED:
            load.status = status
            load.completed_at = self.clock()
            load.updated_by = updated_by
            self.load_store.save(load)
        else:
            self.load_store.update_status(load_id, status, updated_by)

        self.logger.info("load_status_updated", load_id=load_id, status=status.value, updated_by=updated_by)
        return self.get_load(load_id)

    def extend_deadline(self, load_id: str, new_deadline: datetime, updated_by: Optional[str] = None) -> Load:
        """
        Push back the final delivery deadline.

        Raises:
            NotFoundError: If the load does not exist
            InvalidStateError: If the load is closed
            ValidationError: If the new deadline is not later than the current one
        """
        load = self.get_load(load_id)
        if load.status in TERMINAL_STATUSES:
            raise InvalidStateError("Load", load.status.value, message="Closed loads cannot be extended")
        new_deadline = ensure_utc(new_deadline)

        deliveries = load.delivery_stops
        if not deliveries:
            raise ValidationError("Load has no delivery stop")
        current = load.delivery_deadline
        if current is not None and new_deadline <= current:
            raise ValidationError("New deadline must be later than the current deadline")

        deliveries[-1].latest_time = new_deadline
        load.updated_by = updated_by
        self.load_store.save(load)

        self.logger.info(
            "load_deadline_extended",
            load_id=load_id,
            previous_deadline=current.isoformat() if current else None,
            new_deadline=new_deadline.isoformat(),
        )
        return load

    def get_load(self, load_id: str) -> Load:
        load = self.load_store.get_by_id(load_id)
        if load is None:
            raise NotFoundError("Load", load_id)
        return load

    def get_available_loads(self, location: Optional[Location] = None, max_distance_km: float = 500) -> list[Load]:
        return self.load_store.get_available(location, max_distance_km)

    def _validate(self, load: Load) -> None:
        errors = load.validation_errors()
        if errors:
            self.logger.warning("load_validation_failed", load_id=load.load_id, errors=errors)
            raise ValidationError(errors)
