"""
In-memory store adapters.

Every read and write goes through a deep copy so callers never share
mutable state with the store. Each store guards its dict with an RLock.
"""

import threading
from datetime import datetime
from typing import Optional

from loadmatch.core.clock import utc_now
from loadmatch.core.geo import distance_km
from loadmatch.data.models import (
    ACTIVE_MATCH_STATUSES,
    Driver,
    DriverStatus,
    Load,
    LoadStatus,
    Location,
    Match,
    MatchStatus,
    PricingCalculation,
)
from loadmatch.data.models.match import PENDING_MATCH_STATUSES


def _within(origin: Optional[Location], point: Optional[Location], max_distance_km: Optional[float]) -> bool:
    if origin is None or max_distance_km is None:
        return True
    if point is None:
        return False
    return distance_km(origin, point) <= max_distance_km


class InMemoryLoadStore:
    """Load store backed by a dict."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._loads: dict[str, Load] = {}

    def get_by_id(self, load_id: str) -> Optional[Load]:
        with self._lock:
            load = self._loads.get(load_id)
            return load.model_copy(deep=True) if load else None

    def get_available(
        self, location: Optional[Location] = None, max_distance_km: Optional[float] = None
    ) -> list[Load]:
        with self._lock:
            return [
                load.model_copy(deep=True)
                for load in self._loads.values()
                if load.status == LoadStatus.PUBLISHED
                and _within(location, load.pickup_location, max_distance_km)
            ]

    def list_all(self) -> list[Load]:
        with self._lock:
            return [load.model_copy(deep=True) for load in self._loads.values()]

    def save(self, load: Load) -> Load:
        with self._lock:
            self._loads[load.load_id] = load.model_copy(deep=True)
        return load

    def update_status(self, load_id: str, status: LoadStatus, updated_by: Optional[str] = None) -> None:
        with self._lock:
            load = self._loads.get(load_id)
            if load is None:
                return
            load.status = status
            load.updated_by = updated_by


class InMemoryDriverStore:
    """Driver store backed by a dict."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._drivers: dict[str, Driver] = {}

    def get_by_id(self, driver_id: str) -> Optional[Driver]:
        with self._lock:
            driver = self._drivers.get(driver_id)
            return driver.model_copy(deep=True) if driver else None

    def get_available(
        self,
        location: Optional[Location] = None,
        max_distance_km: Optional[float] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
    ) -> list[Driver]:
        available = []
        with self._lock:
            for driver in self._drivers.values():
                if driver.status != DriverStatus.AVAILABLE:
                    continue
                if not _within(location, driver.current_location, max_distance_km):
                    continue
                # The driver's window must overlap [from_time, to_time]
                if to_time and driver.available_from and driver.available_from > to_time:
                    continue
                if from_time and driver.available_until and driver.available_until < from_time:
                    continue
                available.append(driver.model_copy(deep=True))
        return available

    def list_all(self) -> list[Driver]:
        with self._lock:
            return [driver.model_copy(deep=True) for driver in self._drivers.values()]

    def save(self, driver: Driver) -> Driver:
        with self._lock:
            self._drivers[driver.driver_id] = driver.model_copy(deep=True)
        return driver

    def update_location(self, driver_id: str, location: Location) -> None:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return
            driver.current_location = location.model_copy(deep=True)
            driver.last_location_update_at = utc_now()

    def update_status(self, driver_id: str, status: DriverStatus) -> None:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return
            driver.status = status
            driver.last_active_at = utc_now()

    def update_rating(self, driver_id: str, rating: int) -> None:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return
            driver.apply_rating(rating)


class InMemoryMatchStore:
    """Match store backed by a dict."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._matches: dict[str, Match] = {}

    def get_by_id(self, match_id: str) -> Optional[Match]:
        with self._lock:
            match = self._matches.get(match_id)
            return match.model_copy(deep=True) if match else None

    def get_active_by_load(self, load_id: str) -> Optional[Match]:
        with self._lock:
            for match in self._matches.values():
                if match.load_id == load_id and match.status in ACTIVE_MATCH_STATUSES:
                    return match.model_copy(deep=True)
        return None

    def get_active_by_driver(self, driver_id: str) -> Optional[Match]:
        with self._lock:
            for match in self._matches.values():
                if match.driver_id == driver_id and match.status in ACTIVE_MATCH_STATUSES:
                    return match.model_copy(deep=True)
        return None

    def get_for_load(self, load_id: str) -> list[Match]:
        with self._lock:
            matches = [m.model_copy(deep=True) for m in self._matches.values() if m.load_id == load_id]
        return sorted(matches, key=lambda m: m.proposed_at, reverse=True)

    def get_for_driver(self, driver_id: str) -> list[Match]:
        with self._lock:
            matches = [m.model_copy(deep=True) for m in self._matches.values() if m.driver_id == driver_id]
        return sorted(matches, key=lambda m: m.proposed_at, reverse=True)

    def save(self, match: Match) -> Match:
        with self._lock:
            self._matches[match.match_id] = match.model_copy(deep=True)
        return match

    def update_status(
        self,
        match_id: str,
        status: MatchStatus,
        updated_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        with self._lock:
            match = self._matches.get(match_id)
            if match is None:
                return
            match.status = status
            match.updated_by = updated_by
            if reason is not None:
                if status == MatchStatus.DRIVER_REJECTED:
                    match.rejection_reason = reason
                elif status == MatchStatus.CANCELLED:
                    match.cancellation_reason = reason

    def get_expired(self, now: datetime) -> list[Match]:
        with self._lock:
            return [
                m.model_copy(deep=True)
                for m in self._matches.values()
                if m.status in PENDING_MATCH_STATUSES and m.is_expired_at(now)
            ]


class InMemoryPricingCalculationStore:
    """Append-mostly store for pricing audit records."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._calculations: dict[str, PricingCalculation] = {}

    def add(self, calculation: PricingCalculation) -> PricingCalculation:
        with self._lock:
            if calculation.calculation_id in self._calculations:
                raise KeyError(f"Pricing calculation already recorded: {calculation.calculation_id}")
            self._calculations[calculation.calculation_id] = calculation.model_copy(deep=True)
        return calculation

    def get_by_id(self, calculation_id: str) -> Optional[PricingCalculation]:
        with self._lock:
            calculation = self._calculations.get(calculation_id)
            return calculation.model_copy(deep=True) if calculation else None

    def update(self, calculation: PricingCalculation) -> PricingCalculation:
        with self._lock:
            if calculation.calculation_id not in self._calculations:
                raise KeyError(f"Unknown pricing calculation: {calculation.calculation_id}")
            self._calculations[calculation.calculation_id] = calculation.model_copy(deep=True)
        return calculation

    def get_latest_for_load(self, load_id: str) -> Optional[PricingCalculation]:
        history = self.get_history_for_load(load_id)
        return history[0] if history else None

    def get_history_for_load(self, load_id: str) -> list[PricingCalculation]:
        with self._lock:
            history = [
                (seq, c.model_copy(deep=True))
                for seq, c in enumerate(self._calculations.values())
                if c.load_id == load_id
            ]
        # Insertion order breaks ties between identical timestamps
        history.sort(key=lambda item: (item[1].calculated_at, item[0]), reverse=True)
        return [c for _, c in history]

    def list_all(self) -> list[PricingCalculation]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._calculations.values()]
