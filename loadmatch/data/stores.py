"""
Collaborator interfaces the engines depend on.

Persistence, the AI advisor and notification delivery live outside the core;
adapters implement these protocols.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from loadmatch.data.models import (
    Dimensions,
    Driver,
    DriverStatus,
    Load,
    LoadStatus,
    LoadType,
    Location,
    Match,
    MatchStatus,
    PricingCalculation,
    SpecialRequirement,
    VehicleRecommendation,
)


class LoadStore(Protocol):
    def get_by_id(self, load_id: str) -> Optional[Load]: ...

    def get_available(
        self, location: Optional[Location] = None, max_distance_km: Optional[float] = None
    ) -> list[Load]:
        """Published loads, optionally limited to a radius around location."""
        ...

    def save(self, load: Load) -> Load: ...

    def update_status(self, load_id: str, status: LoadStatus, updated_by: Optional[str] = None) -> None:
        """Set the status. Unknown ids are ignored."""
        ...


class DriverStore(Protocol):
    def get_by_id(self, driver_id: str) -> Optional[Driver]: ...

    def get_available(
        self,
        location: Optional[Location] = None,
        max_distance_km: Optional[float] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
    ) -> list[Driver]:
        """Available drivers near location whose availability window overlaps [from_time, to_time]."""
        ...

    def save(self, driver: Driver) -> Driver: ...

    def update_location(self, driver_id: str, location: Location) -> None: ...

    def update_status(self, driver_id: str, status: DriverStatus) -> None: ...

    def update_rating(self, driver_id: str, rating: int) -> None:
        """Fold a 1-5 rating into the driver's running average."""
        ...


class MatchStore(Protocol):
    def get_by_id(self, match_id: str) -> Optional[Match]: ...

    def get_active_by_load(self, load_id: str) -> Optional[Match]: ...

    def get_active_by_driver(self, driver_id: str) -> Optional[Match]: ...

    def get_for_load(self, load_id: str) -> list[Match]: ...

    def get_for_driver(self, driver_id: str) -> list[Match]: ...

    def save(self, match: Match) -> Match: ...

    def update_status(
        self,
        match_id: str,
        status: MatchStatus,
        updated_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Set the status. Unknown ids are ignored."""
        ...

    def get_expired(self, now: datetime) -> list[Match]:
        """Proposed or DriverNotified matches whose expires_at is at or before now."""
        ...


class PricingCalculationStore(Protocol):
    def add(self, calculation: PricingCalculation) -> PricingCalculation: ...

    def get_by_id(self, calculation_id: str) -> Optional[PricingCalculation]: ...

    def update(self, calculation: PricingCalculation) -> PricingCalculation: ...

    def get_latest_for_load(self, load_id: str) -> Optional[PricingCalculation]: ...

    def get_history_for_load(self, load_id: str) -> list[PricingCalculation]:
        """Newest first."""
        ...

    def list_all(self) -> list[PricingCalculation]: ...


class PricingAdvisor(Protocol):
    """
    Untrusted external advisor. Any method may raise, hang or return nonsense;
    callers bound and validate every answer.
    """

    def optimize_price(
        self,
        base_price: Decimal,
        distance_km: float,
        weight_kg: Decimal,
        volume_m3: Optional[Decimal],
        load_type: LoadType,
        special_requirements: list[SpecialRequirement],
        pickup_time: datetime,
        delivery_time: datetime,
    ) -> Decimal: ...

    def recommend_vehicles(
        self,
        weight_kg: Decimal,
        volume_m3: Optional[Decimal],
        load_type: LoadType,
        special_requirements: list[SpecialRequirement],
        dimensions: Optional[Dimensions] = None,
    ) -> list[VehicleRecommendation]: ...


class NotificationSender(Protocol):
    def notify_driver(self, match: Match) -> None: ...
