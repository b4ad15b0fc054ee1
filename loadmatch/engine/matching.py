"""
Match Orchestrator - candidate search, ranking and the match lifecycle.

Lifecycle:
    proposed -> driver_notified -> driver_accepted | driver_rejected | expired
    driver_accepted -> confirmed -> cancelled

Only driver_accepted and confirmed matches are active. Every check-then-write
on active matches runs under the load and driver locks, so at most one
active match exists per load and per driver.
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from loadmatch.core.clock import utc_now
from loadmatch.core.config import MatchingConfig
from loadmatch.core.errors import (
    ConcurrencyConflict,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from loadmatch.core.locks import KeyedLock, driver_key, load_key
from loadmatch.core.logs import get_logger
from loadmatch.data.models import (
    Driver,
    DriverStatus,
    Load,
    LoadStatus,
    Match,
    MatchStatus,
    ScoreBreakdown,
)
from loadmatch.data.models.match import PENDING_MATCH_STATUSES, generate_match_code
from loadmatch.data.stores import DriverStore, LoadStore, MatchStore, NotificationSender
from loadmatch.engine.loads import LoadStateMachine
from loadmatch.engine.scoring import DriverScorer

SYSTEM_ACTOR = "system"


class MatchStateMachine:
    """Allowed match status transitions."""

    ALLOWED_TRANSITIONS: dict[MatchStatus, list[MatchStatus]] = {
        MatchStatus.PROPOSED: [
            MatchStatus.DRIVER_NOTIFIED,
            MatchStatus.DRIVER_ACCEPTED,
            MatchStatus.DRIVER_REJECTED,
            MatchStatus.EXPIRED,
            MatchStatus.CANCELLED,
        ],
        MatchStatus.DRIVER_NOTIFIED: [
            MatchStatus.DRIVER_ACCEPTED,
            MatchStatus.DRIVER_REJECTED,
            MatchStatus.EXPIRED,
            MatchStatus.CANCELLED,
        ],
        MatchStatus.DRIVER_ACCEPTED: [MatchStatus.CONFIRMED, MatchStatus.CANCELLED],
        MatchStatus.CONFIRMED: [MatchStatus.CANCELLED],
        MatchStatus.DRIVER_REJECTED: [],
        MatchStatus.EXPIRED: [],
        MatchStatus.CANCELLED: [],
    }

    @classmethod
    def can_transition(cls, current: MatchStatus, target: MatchStatus) -> bool:
        return target in cls.ALLOWED_TRANSITIONS.get(current, [])

    @classmethod
    def validate_transition(cls, current: MatchStatus, target: MatchStatus) -> None:
        if not cls.can_transition(current, target):
            raise InvalidStateError("Match", current.value, target.value)


class MatchOrchestrator:
    """
    Finds candidate matches and drives matches through their lifecycle.

    Stores, scorer, notifier and clock are injected; the orchestrator itself
    only holds the lock registry.
    """

    def __init__(
        self,
        load_store: LoadStore,
        driver_store: DriverStore,
        match_store: MatchStore,
        scorer: Optional[DriverScorer] = None,
        notifier: Optional[NotificationSender] = None,
        config: Optional[MatchingConfig] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.load_store = load_store
        self.driver_store = driver_store
        self.match_store = match_store
        self.scorer = scorer or DriverScorer()
        self.notifier = notifier
        self.config = config or MatchingConfig()
        self.locks = locks or KeyedLock()
        self.clock = clock
        self.logger = get_logger("match_orchestrator", logger)

    # ------------------------------------------------------------------
    # Candidate search
    # ------------------------------------------------------------------

    def find_matches_for_load(self, load_id: str, max_matches: Optional[int] = None) -> list[Match]:
        """
        Rank available drivers for a published load.

        Args:
            load_id: Load to match
            max_matches: Maximum number of proposals (defaults to config)

        Returns:
            Unsaved proposed matches, best score first. Empty when the load
            is not published.

        Raises:
            NotFoundError: If the load does not exist
            ValidationError: If max_matches is below 1
        """
        max_matches = self._max_matches(max_matches)
        load = self._get_load(load_id)
        if load.status != LoadStatus.PUBLISHED:
            self.logger.info("load_not_matchable", load_id=load_id, status=load.status.value)
            return []

        padding = timedelta(hours=self.config.window_padding_hours)
        pickup = load.pickup_time
        deadline = load.delivery_deadline
        drivers = self.driver_store.get_available(
            load.pickup_location,
            self.config.search_radius_km,
            pickup - padding if pickup else None,
            deadline + padding if deadline else None,
        )
        candidates = [d for d in drivers if self.match_store.get_active_by_driver(d.driver_id) is None]

        now = self.clock()
        threshold = self.scorer.config.minimum_match_score
        matches = [
            self._new_match(load.load_id, driver.driver_id, driver.current_vehicle_id, breakdown, now)
            for driver, breakdown in self.scorer.score_many(load, candidates)
            if breakdown.total >= threshold
        ]
        matches.sort(key=lambda m: m.match_score, reverse=True)

        self.logger.info(
            "matches_found_for_load",
            load_id=load_id,
            drivers_considered=len(drivers),
            candidates=len(candidates),
            matches=len(matches[:max_matches]),
        )
        return matches[:max_matches]

    def find_matches_for_driver(self, driver_id: str, max_matches: Optional[int] = None) -> list[Match]:
        """
        Rank published loads near an available driver.

        Raises:
            NotFoundError: If the driver does not exist
            ValidationError: If max_matches is below 1
        """
        max_matches = self._max_matches(max_matches)
        driver = self._get_driver(driver_id)
        if driver.status != DriverStatus.AVAILABLE:
            self.logger.info("driver_not_matchable", driver_id=driver_id, status=driver.status.value)
            return []

        loads = self.load_store.get_available(driver.current_location, driver.max_distance_km)
        candidates = [ld for ld in loads if self.match_store.get_active_by_load(ld.load_id) is None]

        now = self.clock()
        threshold = self.scorer.config.minimum_match_score
        matches = []
        for load in candidates:
            breakdown = self.scorer.breakdown(load, driver)
            if breakdown.total >= threshold:
                matches.append(
                    self._new_match(load.load_id, driver.driver_id, driver.current_vehicle_id, breakdown, now)
                )
        matches.sort(key=lambda m: m.match_score, reverse=True)

        self.logger.info(
            "matches_found_for_driver",
            driver_id=driver_id,
            loads_considered=len(loads),
            matches=len(matches[:max_matches]),
        )
        return matches[:max_matches]

    def propose_matches_for_load(self, load_id: str, max_matches: Optional[int] = None) -> list[Match]:
        """Find matches for a load and persist them as proposals."""
        matches = self.find_matches_for_load(load_id, max_matches)
        for match in matches:
            self.match_store.save(match)
        self.logger.info("matches_proposed", load_id=load_id, count=len(matches))
        return matches

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_match(
        self,
        load_id: str,
        driver_id: str,
        vehicle_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Match:
        """
        Manually pair a load with a driver, whatever their score.

        Raises:
            NotFoundError: If the load or driver does not exist
            ConcurrencyConflict: If either already has an active match
        """
        load = self._get_load(load_id)
        driver = self._get_driver(driver_id)

        with self.locks.hold(load_key(load_id), driver_key(driver_id)):
            self._ensure_no_active_match(load_id, driver_id)
            breakdown = self.scorer.breakdown(load, driver)
            match = self._new_match(
                load_id,
                driver_id,
                vehicle_id or driver.current_vehicle_id,
                breakdown,
                self.clock(),
            )
            match.created_by = created_by
            self.match_store.save(match)

        self.logger.info(
            "match_created",
            match_id=match.match_id,
            load_id=load_id,
            driver_id=driver_id,
            match_score=str(match.match_score),
            created_by=created_by,
        )
        return match

    def accept_match(self, match_id: str, accepted_by: Optional[str] = None) -> Match:
        """
        Driver accepts a proposed or notified match.

        Acceptance is not limited to proposed matches: a driver_notified match
        can be accepted too, so a driver may answer after being notified.
        The load moves to driver_accepted and records the driver and vehicle.

        Raises:
            NotFoundError: If the match does not exist
            InvalidStateError: If the match is not pending, has expired, or
                the load can no longer be accepted
            ConcurrencyConflict: If the load or driver already has another
                active match
        """
        match = self._get_match(match_id)
        with self._hold(match):
            match = self._get_match(match_id)
            if match.status == MatchStatus.DRIVER_ACCEPTED:
                return match
            MatchStateMachine.validate_transition(match.status, MatchStatus.DRIVER_ACCEPTED)

            now = self.clock()
            if match.is_expired_at(now):
                raise InvalidStateError(
                    "Match",
                    match.status.value,
                    MatchStatus.DRIVER_ACCEPTED.value,
                    message=f"Match {match_id} expired at {match.expires_at.isoformat()}",
                )

            self._ensure_no_active_match(match.load_id, match.driver_id)

            load = self._get_load(match.load_id)
            if not LoadStateMachine.can_transition(load.status, LoadStatus.DRIVER_ACCEPTED):
                raise InvalidStateError("Load", load.status.value, LoadStatus.DRIVER_ACCEPTED.value)

            match.status = MatchStatus.DRIVER_ACCEPTED
            match.responded_at = now
            match.updated_by = accepted_by
            self.match_store.save(match)

            load.status = LoadStatus.DRIVER_ACCEPTED
            load.matched_at = now
            load.matched_driver_id = match.driver_id
            load.matched_vehicle_id = match.vehicle_id
            load.updated_by = accepted_by
            self.load_store.save(load)

        self.logger.info(
            "match_accepted",
            match_id=match_id,
            load_id=match.load_id,
            driver_id=match.driver_id,
            accepted_by=accepted_by,
        )
        return match

    def reject_match(self, match_id: str, reason: str, rejected_by: Optional[str] = None) -> Match:
        """Driver declines a pending match."""

        def stamp(match: Match, now: datetime) -> None:
            match.rejection_reason = reason
            match.responded_at = now

        match = self._transition(match_id, MatchStatus.DRIVER_REJECTED, rejected_by, stamp)
        self.logger.info("match_rejected", match_id=match_id, reason=reason, rejected_by=rejected_by)
        return match

    def notify_driver(self, match_id: str) -> Match:
        """
        Mark a proposed match as sent to the driver and dispatch the notification.

        Delivery is fire-and-forget: sender errors are logged, not raised.
        """
        match = self._get_match(match_id)
        if match.status == MatchStatus.DRIVER_NOTIFIED:
            return match

        def stamp(match: Match, now: datetime) -> None:
            match.notified_at = now

        match = self._transition(match_id, MatchStatus.DRIVER_NOTIFIED, SYSTEM_ACTOR, stamp)

        if self.notifier is not None:
            try:
                self.notifier.notify_driver(match)
            except Exception as e:
                self.logger.error(
                    "driver_notification_failed",
                    match_id=match_id,
                    driver_id=match.driver_id,
                    error=str(e),
                )
        self.logger.info("driver_notified", match_id=match_id, driver_id=match.driver_id)
        return match

    def confirm_match(self, match_id: str, confirmed_by: Optional[str] = None) -> Match:
        """Confirm a match the driver has accepted."""

        def stamp(match: Match, now: datetime) -> None:
            match.confirmed_at = now

        match = self._transition(match_id, MatchStatus.CONFIRMED, confirmed_by, stamp)
        self.logger.info("match_confirmed", match_id=match_id, confirmed_by=confirmed_by)
        return match

    def cancel_match(self, match_id: str, reason: str, cancelled_by: Optional[str] = None) -> Match:
        """
        Cancel a pending, accepted or confirmed match.

        Cancelling an active match puts its load back on the board.
        """
        match = self._get_match(match_id)
        with self._hold(match):
            match = self._get_match(match_id)
            if match.status == MatchStatus.CANCELLED:
                return match
            MatchStateMachine.validate_transition(match.status, MatchStatus.CANCELLED)

            was_active = match.is_active
            now = self.clock()
            match.status = MatchStatus.CANCELLED
            match.cancellation_reason = reason
            match.cancelled_at = now
            match.updated_by = cancelled_by
            self.match_store.save(match)

            if was_active:
                self._release_load(match, cancelled_by)

        self.logger.info(
            "match_cancelled",
            match_id=match_id,
            reason=reason,
            was_active=was_active,
            cancelled_by=cancelled_by,
        )
        return match

    def process_expired_matches(self) -> list[Match]:
        """
        Expire every pending match whose deadline has passed.

        Each match is re-checked under its locks, so a concurrent accept or
        reject wins over the sweep.

        Returns:
            Matches moved to expired in this sweep
        """
        now = self.clock()
        expired = []
        for candidate in self.match_store.get_expired(now):
            with self._hold(candidate):
                match = self.match_store.get_by_id(candidate.match_id)
                if match is None or match.status not in PENDING_MATCH_STATUSES or not match.is_expired_at(now):
                    continue
                self.match_store.update_status(match.match_id, MatchStatus.EXPIRED, SYSTEM_ACTOR)
                match.status = MatchStatus.EXPIRED
                match.updated_by = SYSTEM_ACTOR
                expired.append(match)

        if expired:
            self.logger.info("matches_expired", count=len(expired))
        return expired

    def rate_match(
        self,
        match_id: str,
        driver_rating: Optional[int] = None,
        load_owner_rating: Optional[int] = None,
        driver_feedback: Optional[str] = None,
        load_owner_feedback: Optional[str] = None,
    ) -> Match:
        """
        Record feedback on a confirmed match.

        driver_rating is the load owner's rating of the driver and is folded
        into the driver's running average.

        Raises:
            NotFoundError: If the match does not exist
            InvalidStateError: If the match is not confirmed or was already rated
            ValidationError: If a rating is outside 1..5
        """
        errors = [
            f"{name} must be between 1 and 5"
            for name, value in (("driver_rating", driver_rating), ("load_owner_rating", load_owner_rating))
            if value is not None and not 1 <= value <= 5
        ]
        if errors:
            raise ValidationError(errors)

        match = self._get_match(match_id)
        with self._hold(match):
            match = self._get_match(match_id)
            if match.status != MatchStatus.CONFIRMED:
                raise InvalidStateError("Match", match.status.value, message="Only confirmed matches can be rated")
            if driver_rating is not None and match.driver_rating is not None:
                raise InvalidStateError("Match", match.status.value, message="Driver has already been rated")

            if driver_rating is not None:
                match.driver_rating = driver_rating
                match.driver_feedback = driver_feedback
            if load_owner_rating is not None:
                match.load_owner_rating = load_owner_rating
                match.load_owner_feedback = load_owner_feedback
            self.match_store.save(match)

            if driver_rating is not None:
                self.driver_store.update_rating(match.driver_id, driver_rating)

        self.logger.info(
            "match_rated",
            match_id=match_id,
            driver_rating=driver_rating,
            load_owner_rating=load_owner_rating,
        )
        return match

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_match(self, match_id: str) -> Match:
        return self._get_match(match_id)

    def get_matches_for_load(self, load_id: str, status: Optional[MatchStatus] = None) -> list[Match]:
        return [m for m in self.match_store.get_for_load(load_id) if status is None or m.status == status]

    def get_matches_for_driver(self, driver_id: str, status: Optional[MatchStatus] = None) -> list[Match]:
        return [m for m in self.match_store.get_for_driver(driver_id) if status is None or m.status == status]

    def get_active_match_for_load(self, load_id: str) -> Optional[Match]:
        return self.match_store.get_active_by_load(load_id)

    def get_active_match_for_driver(self, driver_id: str) -> Optional[Match]:
        return self.match_store.get_active_by_driver(driver_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_match(
        self,
        load_id: str,
        driver_id: str,
        vehicle_id: Optional[str],
        breakdown: ScoreBreakdown,
        now: datetime,
    ) -> Match:
        return Match(
            match_id=uuid.uuid4().hex,
            match_code=generate_match_code(now),
            load_id=load_id,
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            match_score=breakdown.total,
            matching_factors=breakdown,
            status=MatchStatus.PROPOSED,
            proposed_at=now,
            expires_at=now + timedelta(hours=self.config.match_ttl_hours),
        )

    def _transition(
        self,
        match_id: str,
        target: MatchStatus,
        actor: Optional[str],
        stamp: Callable[[Match, datetime], None],
    ) -> Match:
        """Move a match to target under its locks; same-status requests are no-ops."""
        match = self._get_match(match_id)
        with self._hold(match):
            match = self._get_match(match_id)
            if match.status == target:
                return match
            MatchStateMachine.validate_transition(match.status, target)
            match.status = target
            match.updated_by = actor
            stamp(match, self.clock())
            self.match_store.save(match)
        return match

    def _release_load(self, match: Match, actor: Optional[str]) -> None:
        load = self.load_store.get_by_id(match.load_id)
        if load is None or load.matched_driver_id not in (None, match.driver_id):
            return
        if not LoadStateMachine.can_transition(load.status, LoadStatus.PUBLISHED):
            self.logger.warning(
                "load_not_released",
                load_id=load.load_id,
                status=load.status.value,
                match_id=match.match_id,
            )
            return
        load.status = LoadStatus.PUBLISHED
        load.matched_driver_id = None
        load.matched_vehicle_id = None
        load.matched_at = None
        load.updated_by = actor
        self.load_store.save(load)
        self.logger.info("load_released", load_id=load.load_id, match_id=match.match_id)

    def _ensure_no_active_match(self, load_id: str, driver_id: str) -> None:
        if self.match_store.get_active_by_load(load_id) is not None:
            raise ConcurrencyConflict(f"Load {load_id} already has an active match", load_id=load_id)
        if self.match_store.get_active_by_driver(driver_id) is not None:
            raise ConcurrencyConflict(f"Driver {driver_id} already has an active match", driver_id=driver_id)

    def _max_matches(self, max_matches: Optional[int]) -> int:
        if max_matches is None:
            return self.config.default_max_matches
        if max_matches < 1:
            raise ValidationError(f"max_matches must be at least 1, got {max_matches}")
        return max_matches

    def _hold(self, match: Match):
        return self.locks.hold(load_key(match.load_id), driver_key(match.driver_id))

    def _get_load(self, load_id: str) -> Load:
        load = self.load_store.get_by_id(load_id)
        if load is None:
            raise NotFoundError("Load", load_id)
        return load

    def _get_driver(self, driver_id: str) -> Driver:
        driver = self.driver_store.get_by_id(driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        return driver

    def _get_match(self, match_id: str) -> Match:
        match = self.match_store.get_by_id(match_id)
        if match is None:
            raise NotFoundError("Match", match_id)
        return match
