"""
Load data model - represents a freight shipment with a multi-stop itinerary.
"""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from loadmatch.core.clock import UTCDateTime, ensure_utc, utc_now
from loadmatch.core.geo import distance_km

WEIGHT_BALANCE_TOLERANCE_KG = Decimal("0.01")
AVERAGE_SPEED_KMH = 60
DELAY_TOLERANCE_MINUTES = 15


class LoadStatus(str, Enum):
    """Load lifecycle status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    MATCHED = "matched"
    DRIVER_ACCEPTED = "driver_accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class LoadType(str, Enum):
    """Type of cargo."""

    GENERAL_CARGO = "general_cargo"
    FURNITURE = "furniture"
    VEHICLE = "vehicle"
    FRAGILE = "fragile"
    LIQUID = "liquid"
    HAZARDOUS = "hazardous"
    REFRIGERATED = "refrigerated"
    OVERSIZED = "oversized"
    CONTAINER = "container"
    BULK = "bulk"
    LIVESTOCK = "livestock"
    MACHINERY = "machinery"
    ELECTRONICS = "electronics"
    FOOD = "food"
    TEXTILE = "textile"
    AUTOMOTIVE = "automotive"
    CONSTRUCTION = "construction"
    MEDICAL = "medical"
    OTHER = "other"


class SpecialRequirement(str, Enum):
    """Handling requirements attached to a load or a stop."""

    NONE = "none"
    COLD_CHAIN = "cold_chain"
    TEMPERATURE_CONTROLLED = "temperature_controlled"
    HAZARDOUS = "hazardous"
    OVERSIZED = "oversized"
    FRAGILE = "fragile"
    HIGH_VALUE = "high_value"
    SECURITY_ESCORT = "security_escort"
    EXPRESS_DELIVERY = "express_delivery"
    APPOINTMENT_REQUIRED = "appointment_required"
    DOCUMENTS_REQUIRED = "documents_required"
    INSURANCE_REQUIRED = "insurance_required"
    GPS_TRACKING = "gps_tracking"
    LIVE_ANIMAL = "live_animal"
    FOOD_GRADE = "food_grade"
    MEDICAL_GRADE = "medical_grade"
    FLAMMABLE_LIQUID = "flammable_liquid"
    CORROSIVE_MATERIAL = "corrosive_material"
    REFRIGERATED = "refrigerated"
    CONTAINER = "container"


HAZARDOUS_REQUIREMENTS = frozenset(
    {
        SpecialRequirement.HAZARDOUS,
        SpecialRequirement.FLAMMABLE_LIQUID,
        SpecialRequirement.CORROSIVE_MATERIAL,
    }
)
REFRIGERATED_REQUIREMENTS = frozenset(
    {
        SpecialRequirement.REFRIGERATED,
        SpecialRequirement.COLD_CHAIN,
        SpecialRequirement.TEMPERATURE_CONTROLLED,
    }
)


def unique_requirements(values: list[SpecialRequirement]) -> list[SpecialRequirement]:
    """Drop duplicate requirements, keeping first-seen order."""
    seen: list[SpecialRequirement] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class StopType(str, Enum):
    """What happens at a stop."""

    PICKUP = "pickup"
    DELIVERY = "delivery"
    BOTH = "both"


class StopStatus(str, Enum):
    """Stop execution status."""

    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    ARRIVED = "arrived"
    LOADING = "loading"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    DELAYED = "delayed"


class Location(BaseModel):
    """Geographic location."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = ""
    city: str = ""
    district: str = ""
    postal_code: str = ""
    country: str = "TR"
    location_name: Optional[str] = None
    access_instructions: Optional[str] = None
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None

    def distance_to(self, other: "Location") -> float:
        """Great-circle distance to another location in km."""
        return distance_km(self, other)

    def __str__(self) -> str:
        """String representation."""
        if self.city:
            return f"{self.city}, {self.country}"
        return f"({self.latitude:.4f}, {self.longitude:.4f})"


class Dimensions(BaseModel):
    """Physical dimensions of the cargo."""

    length: Decimal = Field(..., gt=0)
    width: Decimal = Field(..., gt=0)
    height: Decimal = Field(..., gt=0)
    unit: str = Field("M", pattern="^(M|CM)$")

    @property
    def volume(self) -> Decimal:
        """Volume in the dimensions' own unit, cubed."""
        return self.length * self.width * self.height

    def in_meters(self) -> "Dimensions":
        """Return the same dimensions expressed in meters."""
        if self.unit == "CM":
            return Dimensions(
                length=self.length / 100,
                width=self.width / 100,
                height=self.height / 100,
                unit="M",
            )
        return self

    def fits_in(self, container: "Dimensions") -> bool:
        """Check whether these dimensions fit inside a container's."""
        mine = self.in_meters()
        theirs = container.in_meters()
        return (
            mine.length <= theirs.length
            and mine.width <= theirs.width
            and mine.height <= theirs.height
        )


class LoadStop(BaseModel):
    """A single pickup, delivery or transfer point in a load's itinerary."""

    stop_order: int = Field(..., ge=1, description="Position in the itinerary, 1-based")
    stop_type: StopType
    location: Optional[Location] = None

    # Time window
    earliest_time: Optional[UTCDateTime] = None
    latest_time: Optional[UTCDateTime] = None
    planned_time: Optional[UTCDateTime] = None
    estimated_duration_minutes: int = Field(30, ge=0)

    # Quantities handled at this stop
    pickup_weight: Optional[Decimal] = None
    delivery_weight: Optional[Decimal] = None
    pickup_volume: Optional[Decimal] = None
    delivery_volume: Optional[Decimal] = None

    special_requirements: list[SpecialRequirement] = Field(default_factory=list)
    special_instructions: Optional[str] = None
    load_description: Optional[str] = None

    # Execution
    status: StopStatus = StopStatus.PLANNED
    actual_arrival_time: Optional[UTCDateTime] = None
    actual_departure_time: Optional[UTCDateTime] = None
    completion_notes: Optional[str] = None

    @field_validator("special_requirements")
    @classmethod
    def _dedupe_requirements(cls, value: list[SpecialRequirement]) -> list[SpecialRequirement]:
        return unique_requirements(value)

    @property
    def is_pickup_stop(self) -> bool:
        return self.stop_type in (StopType.PICKUP, StopType.BOTH)

    @property
    def is_delivery_stop(self) -> bool:
        return self.stop_type in (StopType.DELIVERY, StopType.BOTH)

    @property
    def total_pickup_weight(self) -> Decimal:
        return self.pickup_weight or Decimal("0")

    @property
    def total_delivery_weight(self) -> Decimal:
        return self.delivery_weight or Decimal("0")

    @property
    def net_weight_change(self) -> Decimal:
        """Weight added to the vehicle at this stop (negative when unloading)."""
        return self.total_pickup_weight - self.total_delivery_weight

    def is_within_time_window(self, check_time: datetime) -> bool:
        check_time = ensure_utc(check_time)
        if self.earliest_time and check_time < self.earliest_time:
            return False
        if self.latest_time and check_time > self.latest_time:
            return False
        return True

    def is_delayed(self, current_time: datetime) -> bool:
        if self.planned_time is None:
            return False
        return ensure_utc(current_time) > self.planned_time + timedelta(minutes=DELAY_TOLERANCE_MINUTES)

    def validation_errors(self) -> list[str]:
        """Return every rule this stop violates."""
        errors = []
        prefix = f"Stop {self.stop_order}"

        if self.earliest_time and self.latest_time and self.earliest_time >= self.latest_time:
            errors.append(f"{prefix}: earliest time must be before latest time")

        if self.pickup_weight is not None and self.pickup_weight < 0:
            errors.append(f"{prefix}: pickup weight cannot be negative")
        if self.delivery_weight is not None and self.delivery_weight < 0:
            errors.append(f"{prefix}: delivery weight cannot be negative")

        if self.stop_type == StopType.PICKUP and not (self.pickup_weight and self.pickup_weight > 0):
            errors.append(f"{prefix}: pickup stops must have pickup weight")
        if self.stop_type == StopType.DELIVERY and not (self.delivery_weight and self.delivery_weight > 0):
            errors.append(f"{prefix}: delivery stops must have delivery weight")

        if self.location is None:
            errors.append(f"{prefix}: location is required")

        return errors


class Load(BaseModel):
    """
    Represents a freight load with one or more stops.

    Route aggregates (distance, duration, pickup and delivery times) are
    computed from the ordered stop list.
    """

    # Identification
    load_id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique load identifier")
    load_code: str = Field("", description="Human-facing code, e.g. LD202501011200001234")
    company_id: str = Field(..., description="Owning company")
    title: str = ""
    description: Optional[str] = None

    # Status
    status: LoadStatus = Field(LoadStatus.DRAFT, description="Current load status")

    # Cargo
    weight_kg: Decimal = Field(..., description="Total weight in kg")
    volume_m3: Optional[Decimal] = Field(None, description="Total volume in m³")
    dimensions: Optional[Dimensions] = None
    load_type: LoadType = LoadType.GENERAL_CARGO
    special_requirements: list[SpecialRequirement] = Field(default_factory=list)

    # Itinerary
    stops: list[LoadStop] = Field(default_factory=list)

    # Price
    fixed_price: Optional[Decimal] = None

    # Contact
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None

    # Lifecycle metadata
    created_at: UTCDateTime = Field(default_factory=utc_now)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    published_at: Optional[UTCDateTime] = None
    matched_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None
    cancelled_at: Optional[UTCDateTime] = None
    cancellation_reason: Optional[str] = None
    matched_driver_id: Optional[str] = None
    matched_vehicle_id: Optional[str] = None

    @field_validator("special_requirements")
    @classmethod
    def _dedupe_requirements(cls, value: list[SpecialRequirement]) -> list[SpecialRequirement]:
        return unique_requirements(value)

    @property
    def ordered_stops(self) -> list[LoadStop]:
        return sorted(self.stops, key=lambda s: s.stop_order)

    @property
    def pickup_stops(self) -> list[LoadStop]:
        return [s for s in self.ordered_stops if s.is_pickup_stop]

    @property
    def delivery_stops(self) -> list[LoadStop]:
        return [s for s in self.ordered_stops if s.is_delivery_stop]

    @property
    def pickup_location(self) -> Optional[Location]:
        """Location of the first pickup stop."""
        pickups = self.pickup_stops
        return pickups[0].location if pickups else None

    @property
    def pickup_time(self) -> Optional[datetime]:
        """When the first pickup is planned (falls back to its window start)."""
        pickups = self.pickup_stops
        if not pickups:
            return None
        first = pickups[0]
        return first.planned_time or first.earliest_time

    @property
    def delivery_deadline(self) -> Optional[datetime]:
        """Latest acceptable arrival at the final delivery stop."""
        deliveries = self.delivery_stops
        if not deliveries:
            return None
        last = deliveries[-1]
        return last.latest_time or last.planned_time

    @computed_field
    @property
    def total_distance_km(self) -> float:
        """Sum of straight-line legs between consecutive stops."""
        points = [s.location for s in self.ordered_stops if s.location is not None]
        return round(
            sum(distance_km(a, b) for a, b in zip(points, points[1:])),
            2,
        )

    @computed_field
    @property
    def estimated_total_duration_minutes(self) -> int:
        """Driving time at the average speed plus dwell time at every stop."""
        driving = self.total_distance_km / AVERAGE_SPEED_KMH * 60
        dwell = sum(s.estimated_duration_minutes for s in self.stops)
        return int(round(driving + dwell))

    @computed_field
    @property
    def earliest_pickup_time(self) -> Optional[datetime]:
        times = [s.earliest_time or s.planned_time for s in self.pickup_stops]
        times = [t for t in times if t is not None]
        return min(times) if times else None

    @computed_field
    @property
    def latest_delivery_time(self) -> Optional[datetime]:
        times = [s.latest_time or s.planned_time for s in self.delivery_stops]
        times = [t for t in times if t is not None]
        return max(times) if times else None

    @property
    def total_pickup_weight(self) -> Decimal:
        return sum((s.total_pickup_weight for s in self.stops), Decimal("0"))

    @property
    def total_delivery_weight(self) -> Decimal:
        return sum((s.total_delivery_weight for s in self.stops), Decimal("0"))

    def has_requirement(self, *requirements: SpecialRequirement) -> bool:
        return any(r in self.special_requirements for r in requirements)

    def has_valid_stop_order(self) -> bool:
        """Stop orders must run 1..N without gaps or repeats."""
        return [s.stop_order for s in self.ordered_stops] == list(range(1, len(self.stops) + 1))

    def is_weight_balanced(self) -> bool:
        """Everything picked up is delivered, within tolerance."""
        return abs(self.total_pickup_weight - self.total_delivery_weight) <= WEIGHT_BALANCE_TOLERANCE_KG

    def validation_errors(self) -> list[str]:
        """
        Check the load against every domain rule.

        Returns:
            Human-readable description of each violated rule (empty when valid)
        """
        errors = []

        if not self.title.strip():
            errors.append("Title is required")
        if self.weight_kg <= 0:
            errors.append("Weight must be greater than 0")
        if self.volume_m3 is not None and self.volume_m3 < 0:
            errors.append("Volume cannot be negative")

        if not self.stops:
            errors.append("At least one stop is required")
            return errors

        if not self.has_valid_stop_order():
            errors.append("Stop orders must form a contiguous sequence starting at 1")
        if not self.is_weight_balanced():
            errors.append(
                f"Total pickup weight ({self.total_pickup_weight}) must equal "
                f"total delivery weight ({self.total_delivery_weight})"
            )

        if self.pickup_location is None:
            errors.append("Pickup location is required")
        deliveries = self.delivery_stops
        if not deliveries or deliveries[-1].location is None:
            errors.append("Delivery location is required")

        pickup = self.pickup_time
        deadline = self.delivery_deadline
        if pickup and deadline and pickup >= deadline:
            errors.append("Pickup time must be before delivery deadline")

        for stop in self.ordered_stops:
            errors.extend(stop.validation_errors())

        return errors

    class Config:
        """Pydantic configuration."""

        validate_assignment = True
