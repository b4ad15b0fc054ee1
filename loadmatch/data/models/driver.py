"""
Driver data model - license, availability, schedule and performance.
"""

from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from loadmatch.core.clock import UTCDateTime, ensure_utc
from loadmatch.data.models.load import Location

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class DriverStatus(str, Enum):
    """Driver availability status."""

    AVAILABLE = "available"
    BUSY = "busy"
    ON_DUTY = "on_duty"
    ON_BREAK = "on_break"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


class TimeSlot(BaseModel):
    """Working window for one day of the week."""

    start_time: time = time(8, 0)
    end_time: time = time(18, 0)
    is_working_day: bool = True

    def covers(self, moment: time) -> bool:
        if not self.is_working_day:
            return False
        if self.start_time <= self.end_time:
            return self.start_time <= moment <= self.end_time
        # Overnight shift, e.g. 22:00-06:00
        return moment >= self.start_time or moment <= self.end_time


class WorkingHours(BaseModel):
    """Weekly working schedule keyed by lower-case weekday name."""

    days: dict[str, TimeSlot] = Field(default_factory=dict)

    @field_validator("days")
    @classmethod
    def _known_weekdays(cls, value: dict[str, TimeSlot]) -> dict[str, TimeSlot]:
        unknown = [d for d in value if d.lower() not in WEEKDAYS]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(unknown)}")
        return {d.lower(): slot for d, slot in value.items()}

    @classmethod
    def weekdays(cls, start: time = time(8, 0), end: time = time(18, 0)) -> "WorkingHours":
        """Monday to Friday between start and end, weekends off."""
        return cls(
            days={
                day: TimeSlot(start_time=start, end_time=end, is_working_day=day not in ("saturday", "sunday"))
                for day in WEEKDAYS
            }
        )

    def is_available_at(self, moment: datetime) -> bool:
        """
        Check whether the schedule covers a moment.

        Days missing from the schedule are treated as days off.
        """
        slot = self.days.get(WEEKDAYS[moment.weekday()])
        if slot is None:
            return False
        return slot.covers(moment.time())


class Driver(BaseModel):
    """
    Represents a driver in the matching pool.

    Mutated by location, status and rating updates; everything else is
    profile data owned by the driver's company.
    """

    # Identification
    driver_id: str = Field(..., description="Unique driver identifier")
    company_id: Optional[str] = None
    driver_code: str = ""
    name: str = ""
    phone: Optional[str] = None

    # License
    license_number: Optional[str] = None
    license_category: Optional[str] = None
    license_expiry_date: Optional[date] = None
    experience_years: int = Field(0, ge=0)

    # Location
    current_location: Optional[Location] = None
    home_base: Optional[Location] = None
    last_location_update_at: Optional[UTCDateTime] = None

    # Availability
    status: DriverStatus = DriverStatus.AVAILABLE
    available_from: Optional[UTCDateTime] = None
    available_until: Optional[UTCDateTime] = None
    working_hours: Optional[WorkingHours] = None
    max_distance_km: float = Field(500, gt=0)
    preferred_load_types: list[str] = Field(default_factory=list)

    # Performance
    completed_loads: int = Field(0, ge=0)
    average_rating: Decimal = Field(Decimal("0"), ge=0, le=5)
    total_ratings: int = Field(0, ge=0)
    rating_total: Decimal = Field(Decimal("0"), ge=0, description="Sum of every star rating received")
    on_time_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    cancellation_rate: Decimal = Field(Decimal("0"), ge=0, le=100)

    # Capabilities
    has_adr_license: bool = False
    has_src_license: bool = False
    has_forklift_license: bool = False

    current_vehicle_id: Optional[str] = None
    last_active_at: Optional[UTCDateTime] = None

    @model_validator(mode="after")
    def _seed_rating_total(self) -> "Driver":
        # Drivers imported with only an average get a total that reproduces it
        if self.total_ratings and not self.rating_total:
            self.rating_total = self.average_rating * self.total_ratings
        return self

    @property
    def is_new_driver(self) -> bool:
        return self.total_ratings == 0

    def is_available_at(self, moment: datetime) -> bool:
        """Whether the availability window and schedule both allow the moment."""
        moment = ensure_utc(moment)
        if self.available_from and moment < self.available_from:
            return False
        if self.available_until and moment > self.available_until:
            return False
        if self.working_hours and not self.working_hours.is_available_at(moment):
            return False
        return True

    def apply_rating(self, rating: int) -> None:
        """
        Fold a new rating into the running average.

        The average is recomputed from the exact rating total, so rounding
        never compounds across ratings.

        Args:
            rating: Whole-star rating between 1 and 5

        Raises:
            ValueError: If the rating is outside 1..5
        """
        if not 1 <= rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {rating}")

        self.rating_total += Decimal(rating)
        self.total_ratings += 1
        self.average_rating = (self.rating_total / self.total_ratings).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def __str__(self) -> str:
        """String representation."""
        return f"Driver {self.driver_code or self.driver_id} ({self.status.value})"
