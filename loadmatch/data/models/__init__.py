"""
Pydantic data models for load matching.

Core models:
- Load: Freight shipment with a multi-stop itinerary
- Driver: License, availability, schedule and performance
- Match: Pairing of a load with a driver
- PricingResult / PricingCalculation: Price breakdown and audit record
- VehicleRecommendation: Suggested vehicle class for a load
"""

from .driver import Driver, DriverStatus, TimeSlot, WorkingHours
from .load import (
    Dimensions,
    Load,
    LoadStatus,
    LoadStop,
    LoadType,
    Location,
    SpecialRequirement,
    StopStatus,
    StopType,
)
from .match import ACTIVE_MATCH_STATUSES, Match, MatchStatus, ScoreBreakdown
from .pricing import (
    MarketSnapshot,
    PricingCalculation,
    PricingFactors,
    PricingResult,
    VehicleRecommendation,
)

__all__ = [
    "Load",
    "LoadStop",
    "LoadStatus",
    "LoadType",
    "Location",
    "Dimensions",
    "SpecialRequirement",
    "StopType",
    "StopStatus",
    "Driver",
    "DriverStatus",
    "TimeSlot",
    "WorkingHours",
    "Match",
    "MatchStatus",
    "ScoreBreakdown",
    "ACTIVE_MATCH_STATUSES",
    "PricingFactors",
    "PricingResult",
    "PricingCalculation",
    "MarketSnapshot",
    "VehicleRecommendation",
]
