"""
Vehicle Matcher - recommends vehicle classes for a load.

Rule-based recommendations are always available. An advisor's list replaces
them only when it is non-empty and every entry is well formed.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from loadmatch.core.errors import AdvisoryFailure
from loadmatch.core.logs import get_logger
from loadmatch.data.models import (
    Dimensions,
    LoadType,
    SpecialRequirement,
    VehicleRecommendation,
)
from loadmatch.data.stores import PricingAdvisor
from loadmatch.engine.advisory import AdvisoryRunner
from loadmatch.engine.pricing import to_money

LIGHT_MAX_KG = Decimal("1000")
MEDIUM_MAX_KG = Decimal("3500")


class VehicleClass(BaseModel):
    """Static description of a vehicle class used by the rules."""

    key: str
    vehicle_type: str
    reason: str
    suitability_score: int
    rate_per_kg: Decimal
    max_weight: Decimal
    max_volume: Optional[Decimal] = None


VEHICLE_CLASSES: dict[str, VehicleClass] = {
    vc.key: vc
    for vc in [
        VehicleClass(
            key="adr_heavy_truck",
            vehicle_type="ADR-certified heavy truck",
            reason="Hazardous goods require an ADR-certified vehicle",
            suitability_score=95,
            rate_per_kg=Decimal("5.0"),
            max_weight=Decimal("24000"),
            max_volume=Decimal("90"),
        ),
        VehicleClass(
            key="flatbed_heavy_truck",
            vehicle_type="Open-flatbed heavy truck",
            reason="Oversized cargo needs an open flatbed",
            suitability_score=90,
            rate_per_kg=Decimal("4.5"),
            max_weight=Decimal("24000"),
        ),
        VehicleClass(
            key="refrigerated_van",
            vehicle_type="Refrigerated van",
            reason="Light cold-chain cargo fits a refrigerated van",
            suitability_score=95,
            rate_per_kg=Decimal("3.5"),
            max_weight=Decimal("1000"),
            max_volume=Decimal("7"),
        ),
        VehicleClass(
            key="van",
            vehicle_type="Van",
            reason="Economical option for light cargo",
            suitability_score=90,
            rate_per_kg=Decimal("2.0"),
            max_weight=Decimal("1000"),
            max_volume=Decimal("7"),
        ),
        VehicleClass(
            key="refrigerated_medium_truck",
            vehicle_type="Refrigerated medium truck",
            reason="Medium-weight cold-chain cargo",
            suitability_score=95,
            rate_per_kg=Decimal("3.0"),
            max_weight=Decimal("3500"),
            max_volume=Decimal("15"),
        ),
        VehicleClass(
            key="medium_truck",
            vehicle_type="Medium truck",
            reason="Suited to medium-weight cargo",
            suitability_score=90,
            rate_per_kg=Decimal("2.5"),
            max_weight=Decimal("3500"),
            max_volume=Decimal("15"),
        ),
        VehicleClass(
            key="refrigerated_heavy_truck",
            vehicle_type="Refrigerated heavy truck",
            reason="Heavy cold-chain cargo",
            suitability_score=95,
            rate_per_kg=Decimal("4.0"),
            max_weight=Decimal("24000"),
            max_volume=Decimal("90"),
        ),
        VehicleClass(
            key="heavy_truck",
            vehicle_type="Heavy truck",
            reason="Standard option for heavy cargo",
            suitability_score=90,
            rate_per_kg=Decimal("3.5"),
            max_weight=Decimal("24000"),
            max_volume=Decimal("90"),
        ),
    ]
}


class VehicleMatcher:
    """Recommends vehicle classes from load weight, volume and requirements."""

    def __init__(
        self,
        advisor: Optional[PricingAdvisor] = None,
        runner: Optional[AdvisoryRunner] = None,
        rates: Optional[dict[str, Any]] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            advisor: Optional external advisor
            runner: Timeout-bounded runner for advisor calls
            rates: Per-kg rate overrides keyed by vehicle class (e.g. {"van": 2.2})
            logger: Optional structured logger
        """
        self.advisor = advisor
        self.runner = runner or AdvisoryRunner()
        self.logger = get_logger("vehicle_matcher", logger)
        self.classes = dict(VEHICLE_CLASSES)
        for key, rate in (rates or {}).items():
            if key not in self.classes:
                raise KeyError(f"Unknown vehicle class in rates: {key}")
            self.classes[key] = self.classes[key].model_copy(update={"rate_per_kg": Decimal(str(rate))})

    def recommend_vehicles(
        self,
        weight_kg: Decimal,
        volume_m3: Optional[Decimal],
        load_type: LoadType,
        special_requirements: Iterable[SpecialRequirement],
        dimensions: Optional[Dimensions] = None,
        use_ai_recommendation: bool = False,
    ) -> list[VehicleRecommendation]:
        """
        Recommend vehicle classes for a load.

        Args:
            weight_kg: Cargo weight in kg
            volume_m3: Cargo volume in m³, if known
            load_type: Cargo type
            special_requirements: Handling requirements
            dimensions: Cargo dimensions, if known
            use_ai_recommendation: Ask the advisor first

        Returns:
            Recommendations sorted by descending suitability
        """
        weight = Decimal(str(weight_kg))
        requirements = list(special_requirements)

        recommendations = None
        if use_ai_recommendation and self.advisor is not None:
            recommendations = self._advisor_recommendations(
                weight, volume_m3, load_type, requirements, dimensions
            )

        if recommendations is None:
            recommendations = self.rule_based_recommendations(weight, requirements)

        return sorted(recommendations, key=lambda r: r.suitability_score, reverse=True)

    def rule_based_recommendations(
        self, weight_kg: Decimal, special_requirements: list[SpecialRequirement]
    ) -> list[VehicleRecommendation]:
        requirements = set(special_requirements)
        refrigerated = bool(requirements & {SpecialRequirement.REFRIGERATED, SpecialRequirement.COLD_CHAIN})

        if SpecialRequirement.HAZARDOUS in requirements:
            key = "adr_heavy_truck"
        elif SpecialRequirement.OVERSIZED in requirements:
            key = "flatbed_heavy_truck"
        elif weight_kg <= LIGHT_MAX_KG:
            key = "refrigerated_van" if refrigerated else "van"
        elif weight_kg <= MEDIUM_MAX_KG:
            key = "refrigerated_medium_truck" if refrigerated else "medium_truck"
        else:
            key = "refrigerated_heavy_truck" if refrigerated else "heavy_truck"

        return [self._recommend(self.classes[key], weight_kg)]

    def _recommend(self, vehicle_class: VehicleClass, weight_kg: Decimal) -> VehicleRecommendation:
        return VehicleRecommendation(
            vehicle_type=vehicle_class.vehicle_type,
            suitability_score=vehicle_class.suitability_score,
            reason=vehicle_class.reason,
            max_weight=vehicle_class.max_weight,
            max_volume=vehicle_class.max_volume,
            estimated_cost=to_money(weight_kg * vehicle_class.rate_per_kg),
        )

    def _advisor_recommendations(
        self,
        weight: Decimal,
        volume_m3: Optional[Decimal],
        load_type: LoadType,
        requirements: list[SpecialRequirement],
        dimensions: Optional[Dimensions],
    ) -> Optional[list[VehicleRecommendation]]:
        """Advisor suggestions, or None when they are missing or malformed."""
        try:
            raw = self.runner.call(
                "recommend_vehicles",
                self.advisor.recommend_vehicles,
                weight,
                volume_m3,
                load_type,
                requirements,
                dimensions,
            )
        except AdvisoryFailure as e:
            self.logger.warning("advisor_failed", operation="recommend_vehicles", error=str(e))
            return None

        if not raw:
            self.logger.info("advisor_returned_no_vehicles")
            return None

        try:
            recommendations = [
                VehicleRecommendation.model_validate(
                    item.model_dump() if isinstance(item, BaseModel) else item
                )
                for item in raw
            ]
        except (PydanticValidationError, TypeError) as e:
            self.logger.warning("advisor_vehicles_malformed", error=str(e))
            return None

        self.logger.info("advisor_vehicles_used", count=len(recommendations))
        return recommendations
