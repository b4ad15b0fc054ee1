"""
Pricing Advisor Agent - LLM second opinion on prices and vehicle classes.

This agent:
- Suggests an adjusted price for a load given the deterministic price
- Suggests vehicle classes for a load's weight, volume and requirements

Its answers are untrusted: the pricing engine clamps prices and the vehicle
matcher validates recommendations before using them.
"""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from time import time
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from loadmatch.agents.base import AgentDecision, BaseAgent
from loadmatch.core.clock import utc_now
from loadmatch.core.errors import AdvisoryFailure
from loadmatch.data.models import (
    Dimensions,
    Load,
    LoadType,
    SpecialRequirement,
    VehicleRecommendation,
)


class PricingAdvisorAgent(BaseAgent):
    """
    LLM-backed pricing advisor.

    Implements the PricingAdvisor protocol. Every failure is raised as
    AdvisoryFailure.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the pricing advisor agent."""
        super().__init__(agent_name="pricing_advisor", **kwargs)
        self.currency = self.config_manager.get_pricing_config().currency

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
    ) -> Decimal:
        """
        Ask the model for a market-adjusted price.

        Args:
            base_price: Deterministic price from the pricing engine
            distance_km: Route distance in km
            weight_kg: Cargo weight in kg
            volume_m3: Cargo volume in m³, if known
            load_type: Cargo type
            special_requirements: Handling requirements
            pickup_time: Planned pickup
            delivery_time: Delivery deadline

        Returns:
            Suggested price (unbounded; callers clamp it)

        Raises:
            AdvisoryFailure: If the model fails or answers without a usable price
        """
        start_time = time()
        context = {
            "calculated_price": float(base_price),
            "currency": self.currency,
            "distance_km": round(distance_km, 1),
            "weight_kg": float(weight_kg),
            "volume_m3": float(volume_m3) if volume_m3 is not None else None,
            "load_type": load_type.value,
            "special_requirements": [r.value for r in special_requirements],
            "pickup_time": pickup_time.isoformat(),
            "delivery_time": delivery_time.isoformat(),
        }

        prompt = f"""Review this freight price and suggest a market-adjusted price.

Shipment:
{json.dumps(context, indent=2)}

Consider lane demand, seasonality, the pickup time and the cargo's handling needs.
Stay within half and double the calculated price.

Format your response as JSON:
{{
    "optimized_price": <decimal>,
    "confidence": <0.0-1.0>,
    "reasoning": "<short explanation>"
}}
"""

        reply, model = self.call_llm(prompt, temperature=0.1)
        data = self.parse_json_reply(reply)
        if not isinstance(data, dict) or "optimized_price" not in data:
            raise AdvisoryFailure("Model reply has no optimized_price")

        try:
            price = Decimal(str(data["optimized_price"]))
        except (InvalidOperation, ValueError) as e:
            raise AdvisoryFailure(f"optimized_price is not a number: {data['optimized_price']!r}") from e
        if not price.is_finite():
            raise AdvisoryFailure(f"optimized_price is not finite: {price}")

        self.log_decision(
            AgentDecision(
                timestamp=utc_now(),
                agent_name=self.agent_name,
                decision_type="price_optimization",
                input_data=context,
                reasoning=str(data.get("reasoning", "")),
                confidence=_confidence(data.get("confidence")),
                output_data={"optimized_price": float(price)},
                model=model,
                execution_time_seconds=time() - start_time,
            )
        )
        return price

    def recommend_vehicles(
        self,
        weight_kg: Decimal,
        volume_m3: Optional[Decimal],
        load_type: LoadType,
        special_requirements: list[SpecialRequirement],
        dimensions: Optional[Dimensions] = None,
    ) -> list[VehicleRecommendation]:
        """
        Ask the model which vehicle classes suit a load.

        Raises:
            AdvisoryFailure: If the model fails or any recommendation is malformed
        """
        start_time = time()
        context = {
            "weight_kg": float(weight_kg),
            "volume_m3": float(volume_m3) if volume_m3 is not None else None,
            "load_type": load_type.value,
            "special_requirements": [r.value for r in special_requirements],
            "dimensions": dimensions.model_dump(mode="json") if dimensions else None,
            "currency": self.currency,
        }

        prompt = f"""Recommend vehicle classes for this shipment.

Shipment:
{json.dumps(context, indent=2)}

Hazardous goods need an ADR-certified vehicle; cold-chain goods need refrigeration.

Format your response as JSON:
{{
    "recommendations": [
        {{
            "vehicle_type": "<name>",
            "suitability_score": <0-100>,
            "reason": "<why>",
            "max_weight": <kg>,
            "max_volume": <m3 or null>,
            "estimated_cost": <decimal>
        }}
    ]
}}
"""

        reply, model = self.call_llm(prompt, temperature=0.2)
        data = self.parse_json_reply(reply)
        items = data.get("recommendations") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise AdvisoryFailure("Model reply has no recommendations list")

        try:
            recommendations = [VehicleRecommendation.model_validate(item) for item in items]
        except PydanticValidationError as e:
            raise AdvisoryFailure(f"Malformed vehicle recommendation: {e}") from e

        self.log_decision(
            AgentDecision(
                timestamp=utc_now(),
                agent_name=self.agent_name,
                decision_type="vehicle_recommendation",
                input_data=context,
                reasoning="; ".join(r.reason for r in recommendations),
                confidence=max((r.suitability_score for r in recommendations), default=0) / 100,
                output_data={"vehicle_types": [r.vehicle_type for r in recommendations]},
                model=model,
                execution_time_seconds=time() - start_time,
            )
        )
        return recommendations

    def execute(self, load: Load, base_price: Decimal) -> Decimal:
        """
        Suggest a price for a load (delegates to optimize_price).

        Args:
            load: Load being priced
            base_price: Deterministic price from the pricing engine

        Returns:
            Suggested price
        """
        requirements = list(load.special_requirements)
        for stop in load.stops:
            requirements.extend(r for r in stop.special_requirements if r not in requirements)

        now = utc_now()
        return self.optimize_price(
            base_price=base_price,
            distance_km=load.total_distance_km,
            weight_kg=load.weight_kg,
            volume_m3=load.volume_m3,
            load_type=load.load_type,
            special_requirements=requirements,
            pickup_time=load.pickup_time or now,
            delivery_time=load.delivery_deadline or now,
        )


def _confidence(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return 0.5


def main() -> None:
    """Example usage of the pricing advisor agent."""
    from datetime import timedelta

    from loadmatch.core.logs import configure_logging

    configure_logging(json_output=False)

    agent = PricingAdvisorAgent()
    pickup = utc_now() + timedelta(days=3)

    try:
        price = agent.optimize_price(
            base_price=Decimal("1850.00"),
            distance_km=450.0,
            weight_kg=Decimal("2000"),
            volume_m3=Decimal("12"),
            load_type=LoadType.FOOD,
            special_requirements=[SpecialRequirement.COLD_CHAIN],
            pickup_time=pickup,
            delivery_time=pickup + timedelta(hours=10),
        )
    except AdvisoryFailure as e:
        print(f"Advisor unavailable: {e}")
        return

    print("\n" + "=" * 80)
    print("PRICE ADVICE")
    print("=" * 80)
    print(f"Calculated: 1850.00 {agent.currency}")
    print(f"Suggested:  {price} {agent.currency}")
    print("=" * 80)


if __name__ == "__main__":
    main()
