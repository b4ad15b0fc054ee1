"""
Pricing data models - price breakdowns, audit records and vehicle suggestions.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field

from loadmatch.core.clock import UTCDateTime


class PricingFactors(BaseModel):
    """Every multiplier applied to a base price. Inactive factors stay at 1.0."""

    volume_factor: Decimal = Decimal("1.0")
    hazardous_factor: Decimal = Decimal("1.0")
    refrigerated_factor: Decimal = Decimal("1.0")
    weekend_factor: Decimal = Decimal("1.0")
    peak_hours_factor: Decimal = Decimal("1.0")
    urgency_factor: Decimal = Decimal("1.0")
    special_requirements_factor: Decimal = Decimal("1.0")

    @computed_field
    @property
    def total_multiplier(self) -> Decimal:
        """Product of all factors."""
        total = Decimal("1")
        for value in (
            self.volume_factor,
            self.hazardous_factor,
            self.refrigerated_factor,
            self.weekend_factor,
            self.peak_hours_factor,
            self.urgency_factor,
            self.special_requirements_factor,
        ):
            total *= value
        return total


class PricingResult(BaseModel):
    """Outcome of a single price computation."""

    base_price: Decimal
    final_price: Decimal
    optimized_price: Optional[Decimal] = None
    recommended_price: Decimal = Field(..., ge=0)
    factors: PricingFactors
    ai_optimization_details: Optional[str] = None
    algorithm_version: str
    calculated_at: UTCDateTime

    @property
    def total_multiplier(self) -> Decimal:
        return self.factors.total_multiplier

    @property
    def was_ai_optimized(self) -> bool:
        return self.optimized_price is not None


class MarketSnapshot(BaseModel):
    """Market conditions seen at pricing time."""

    available_drivers: Optional[int] = None
    average_market_price: Optional[Decimal] = None
    sample_size: int = 0


class PricingCalculation(BaseModel):
    """
    Audit record of one pricing run for a load.

    Only manual adjustment and acceptance marking change a record after it
    has been stored.
    """

    calculation_id: str
    load_id: str
    algorithm_version: str

    base_price: Decimal
    factors: PricingFactors
    total_multiplier: Decimal
    final_price: Decimal
    optimized_price: Optional[Decimal] = None
    recommended_price: Decimal
    calculated_price: Decimal
    ai_optimization_details: Optional[str] = None

    market_snapshot: MarketSnapshot = Field(default_factory=MarketSnapshot)
    calculation_inputs: dict[str, Any] = Field(default_factory=dict)
    calculated_at: UTCDateTime

    # Manual adjustment
    is_manually_adjusted: bool = False
    manual_adjustment: Optional[Decimal] = None
    manual_adjustment_reason: Optional[str] = None
    adjusted_by: Optional[str] = None
    adjusted_at: Optional[UTCDateTime] = None

    # Acceptance
    was_accepted: bool = False
    accepted_at: Optional[UTCDateTime] = None
    final_agreed_price: Optional[Decimal] = None
    accepted_by: Optional[str] = None
    price_variance_percentage: Optional[Decimal] = None


class VehicleRecommendation(BaseModel):
    """A vehicle class suggested for a load."""

    vehicle_type: str = Field(..., min_length=1)
    suitability_score: int = Field(..., ge=0, le=100)
    reason: str = ""
    max_weight: Optional[Decimal] = None
    max_volume: Optional[Decimal] = None
    estimated_cost: Optional[Decimal] = None
