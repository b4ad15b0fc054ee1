"""
Pricing Engine - factor-based freight pricing with a bounded AI adjustment.

The deterministic price is:

    base_price  = distance_km * distance_rate + weight_kg * weight_rate
    final_price = base_price * (product of every pricing factor)

An optional advisor may suggest a different price. Its suggestion is clamped
into [advisor_min_ratio * final, advisor_max_ratio * final]; any advisor
failure falls back to the deterministic price.
"""

import re
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from loadmatch.core.clock import ensure_utc, utc_now
from loadmatch.core.config import MatchingConfig, PricingConfig
from loadmatch.core.errors import AdvisoryFailure, NotFoundError, ValidationError
from loadmatch.core.logs import get_logger
from loadmatch.data.models import (
    Load,
    LoadType,
    MarketSnapshot,
    PricingCalculation,
    PricingFactors,
    PricingResult,
    SpecialRequirement,
)
from loadmatch.data.models.load import (
    HAZARDOUS_REQUIREMENTS,
    REFRIGERATED_REQUIREMENTS,
    unique_requirements,
)
from loadmatch.data.stores import DriverStore, PricingAdvisor, PricingCalculationStore
from loadmatch.engine.advisory import AdvisoryRunner

CENTS = Decimal("0.01")
FACTOR_REQUIREMENTS = HAZARDOUS_REQUIREMENTS | REFRIGERATED_REQUIREMENTS | {SpecialRequirement.NONE}


def to_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class PricingEngine:
    """
    Computes recommended prices for loads.

    Holds no mutable state beyond its configuration; a new configuration
    means a new engine (see update_parameters).
    """

    def __init__(
        self,
        config: Optional[PricingConfig] = None,
        advisor: Optional[PricingAdvisor] = None,
        runner: Optional[AdvisoryRunner] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.config = config or PricingConfig()
        self.advisor = advisor
        self.runner = runner or AdvisoryRunner(timeout_seconds=self.config.advisor_timeout_seconds)
        self.clock = clock
        self.logger = get_logger("pricing_engine", logger)

    def calculate_price(
        self,
        distance_km: float,
        weight_kg: Decimal,
        volume_m3: Optional[Decimal],
        load_type: LoadType,
        special_requirements: Iterable[SpecialRequirement],
        pickup_time: datetime,
        delivery_time: datetime,
        use_ai_optimization: bool = False,
        now: Optional[datetime] = None,
    ) -> PricingResult:
        """
        Price a shipment.

        Args:
            distance_km: Route distance in km
            weight_kg: Cargo weight in kg
            volume_m3: Cargo volume in m³, if known
            load_type: Cargo type
            special_requirements: Handling requirements
            pickup_time: Planned pickup; naive times are taken as UTC
            delivery_time: Delivery deadline
            use_ai_optimization: Ask the advisor (if any) for an adjusted price
            now: Reference time for urgency; defaults to the engine clock

        Returns:
            PricingResult with every factor, even those left at 1.0

        Raises:
            ValidationError: On negative distance or volume, or non-positive weight
        """
        now = ensure_utc(now or self.clock())
        pickup_time = ensure_utc(pickup_time)
        delivery_time = ensure_utc(delivery_time)
        weight = _decimal(weight_kg)
        volume = _decimal(volume_m3) if volume_m3 is not None else None
        requirements = unique_requirements(list(special_requirements))

        errors = []
        if distance_km < 0:
            errors.append("Distance cannot be negative")
        if weight <= 0:
            errors.append("Weight must be greater than 0")
        if volume is not None and volume < 0:
            errors.append("Volume cannot be negative")
        if errors:
            raise ValidationError(errors)

        base_price = to_money(_decimal(distance_km) * self.config.distance_rate + weight * self.config.weight_rate)
        factors = self.calculate_factors(volume, requirements, pickup_time, now)
        final_price = to_money(base_price * factors.total_multiplier)

        optimized_price = None
        details = None
        if use_ai_optimization:
            optimized_price, details = self._optimize(
                final_price,
                distance_km,
                weight,
                volume,
                load_type,
                requirements,
                pickup_time,
                delivery_time,
            )

        recommended_price = optimized_price if optimized_price is not None else final_price

        self.logger.info(
            "price_calculated",
            base_price=str(base_price),
            total_multiplier=str(factors.total_multiplier),
            final_price=str(final_price),
            recommended_price=str(recommended_price),
            ai_optimized=optimized_price is not None,
        )

        return PricingResult(
            base_price=base_price,
            final_price=final_price,
            optimized_price=optimized_price,
            recommended_price=max(recommended_price, Decimal("0")),
            factors=factors,
            ai_optimization_details=details,
            algorithm_version=self.config.algorithm_version,
            calculated_at=now,
        )

    def calculate_factors(
        self,
        volume_m3: Optional[Decimal],
        special_requirements: list[SpecialRequirement],
        pickup_time: datetime,
        now: datetime,
    ) -> PricingFactors:
        """Work out each multiplier from its trigger condition."""
        cfg = self.config
        one = Decimal("1.0")
        requirements = set(special_requirements)

        hours_until_pickup = (pickup_time - now).total_seconds() / 3600
        if hours_until_pickup < cfg.urgent_hours:
            urgency = cfg.urgent_factor
        elif hours_until_pickup < cfg.soon_hours:
            urgency = cfg.soon_factor
        else:
            urgency = one

        others = len(requirements - FACTOR_REQUIREMENTS)

        return PricingFactors(
            volume_factor=(
                cfg.volume_factor
                if volume_m3 is not None and volume_m3 > cfg.large_volume_threshold_m3
                else one
            ),
            hazardous_factor=cfg.hazardous_factor if requirements & HAZARDOUS_REQUIREMENTS else one,
            refrigerated_factor=cfg.refrigerated_factor if requirements & REFRIGERATED_REQUIREMENTS else one,
            weekend_factor=cfg.weekend_factor if pickup_time.weekday() >= 5 else one,
            peak_hours_factor=(
                cfg.peak_hours_factor
                if any(start <= pickup_time.hour < end for start, end in cfg.peak_hours)
                else one
            ),
            urgency_factor=urgency,
            special_requirements_factor=one + cfg.special_requirement_step * others,
        )

    def price_load(
        self,
        load: Load,
        use_ai_optimization: bool = False,
        now: Optional[datetime] = None,
    ) -> PricingResult:
        """
        Price a load from its own attributes and itinerary.

        Stop-level requirements count alongside the load's own. Missing
        pickup or delivery times fall back to now.
        """
        now = now or self.clock()
        requirements = list(load.special_requirements)
        for stop in load.ordered_stops:
            requirements.extend(stop.special_requirements)

        return self.calculate_price(
            distance_km=load.total_distance_km,
            weight_kg=load.weight_kg,
            volume_m3=load.volume_m3,
            load_type=load.load_type,
            special_requirements=unique_requirements(requirements),
            pickup_time=load.pickup_time or now,
            delivery_time=load.delivery_deadline or now,
            use_ai_optimization=use_ai_optimization,
            now=now,
        )

    def estimate_market_price(self, load_type: LoadType, distance_km: float, weight_kg: Decimal) -> Decimal:
        """Rough market price for a load type, used in pricing snapshots."""
        base = _decimal(distance_km) * self.config.distance_rate + _decimal(weight_kg) * self.config.weight_rate
        multiplier = self.config.market_load_type_multipliers.get(
            load_type.value, self.config.market_default_multiplier
        )
        return to_money(base * multiplier)

    def update_parameters(self, **overrides: Any) -> "PricingEngine":
        """
        Build a new engine with some algorithm parameters changed.

        Without an explicit algorithm_version the current one gets a revision
        suffix (v2.0-factors -> v2.0-factors-r1 -> v2.0-factors-r2).

        Raises:
            ValidationError: On unknown parameter names or invalid values
        """
        unknown = sorted(set(overrides) - set(PricingConfig.model_fields))
        if unknown:
            raise ValidationError([f"Unknown pricing parameter: {name}" for name in unknown])

        if "algorithm_version" not in overrides:
            overrides["algorithm_version"] = _next_version(self.config.algorithm_version)

        try:
            config = PricingConfig(**{**self.config.model_dump(), **overrides})
        except PydanticValidationError as e:
            raise ValidationError([err["msg"] for err in e.errors()]) from e

        self.logger.info(
            "pricing_parameters_updated",
            previous_version=self.config.algorithm_version,
            algorithm_version=config.algorithm_version,
            changed=sorted(overrides),
        )
        return PricingEngine(
            config=config,
            advisor=self.advisor,
            runner=self.runner,
            clock=self.clock,
            logger=self.logger,
        )

    def _optimize(
        self,
        final_price: Decimal,
        distance_km: float,
        weight: Decimal,
        volume: Optional[Decimal],
        load_type: LoadType,
        requirements: list[SpecialRequirement],
        pickup_time: datetime,
        delivery_time: datetime,
    ) -> tuple[Optional[Decimal], str]:
        """Ask the advisor for a price and bound it. Returns (price or None, details)."""
        if self.advisor is None:
            return None, "No pricing advisor configured"

        try:
            raw = self.runner.call(
                "optimize_price",
                self.advisor.optimize_price,
                final_price,
                distance_km,
                weight,
                volume,
                load_type,
                requirements,
                pickup_time,
                delivery_time,
            )
            suggested = _coerce_price(raw)
        except AdvisoryFailure as e:
            self.logger.warning("advisor_failed", operation="optimize_price", error=str(e))
            return None, f"Advisor unavailable, deterministic price used ({e})"

        lower = final_price * self.config.advisor_min_ratio
        upper = final_price * self.config.advisor_max_ratio
        bounded = to_money(min(max(suggested, lower), upper))

        if bounded != to_money(suggested):
            self.logger.info(
                "advisor_price_clamped",
                suggested=str(suggested),
                used=str(bounded),
                final_price=str(final_price),
            )
            return bounded, f"Advisor suggested {suggested}, clamped to {bounded}"
        return bounded, f"Advisor suggested {bounded}"


def _coerce_price(raw: Any) -> Decimal:
    """Turn an advisor answer into a finite Decimal or raise AdvisoryFailure."""
    if isinstance(raw, bool):
        raise AdvisoryFailure(f"Advisor returned a non-numeric price: {raw!r}")
    try:
        value = _decimal(raw)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise AdvisoryFailure(f"Advisor returned a non-numeric price: {raw!r}") from e
    if not value.is_finite():
        raise AdvisoryFailure(f"Advisor returned a non-finite price: {raw!r}")
    return value


def _next_version(version: str) -> str:
    found = re.search(r"-r(\d+)$", version)
    if found:
        return f"{version[: found.start()]}-r{int(found.group(1)) + 1}"
    return f"{version}-r1"


class PricingLedger:
    """
    Audit trail of pricing runs.

    Every quote is stored as a PricingCalculation. Records change afterwards
    only through manual adjustment or acceptance.
    """

    def __init__(
        self,
        engine: PricingEngine,
        calculation_store: PricingCalculationStore,
        driver_store: Optional[DriverStore] = None,
        matching_config: Optional[MatchingConfig] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.engine = engine
        self.calculation_store = calculation_store
        self.driver_store = driver_store
        self.matching_config = matching_config or MatchingConfig()
        self.logger = get_logger("pricing_ledger", logger)

    def quote_load(
        self,
        load: Load,
        use_ai_optimization: bool = False,
        now: Optional[datetime] = None,
    ) -> PricingCalculation:
        """
        Price a load and record the calculation.

        Args:
            load: Load to price
            use_ai_optimization: Ask the advisor for an adjusted price
            now: Reference time; defaults to the engine clock

        Returns:
            The stored PricingCalculation
        """
        result = self.engine.price_load(load, use_ai_optimization=use_ai_optimization, now=now)

        calculation = PricingCalculation(
            calculation_id=uuid.uuid4().hex,
            load_id=load.load_id,
            algorithm_version=result.algorithm_version,
            base_price=result.base_price,
            factors=result.factors,
            total_multiplier=result.total_multiplier,
            final_price=result.final_price,
            optimized_price=result.optimized_price,
            recommended_price=result.recommended_price,
            calculated_price=result.recommended_price,
            ai_optimization_details=result.ai_optimization_details,
            market_snapshot=self._market_snapshot(load),
            calculation_inputs=_calculation_inputs(load),
            calculated_at=result.calculated_at,
        )
        self.calculation_store.add(calculation)

        self.logger.info(
            "pricing_calculation_recorded",
            calculation_id=calculation.calculation_id,
            load_id=load.load_id,
            calculated_price=str(calculation.calculated_price),
            algorithm_version=calculation.algorithm_version,
        )
        return calculation

    def adjust_price_manually(
        self,
        calculation_id: str,
        adjustment: Decimal,
        reason: str,
        adjusted_by: str,
    ) -> PricingCalculation:
        """
        Add a manual adjustment (positive or negative) to a calculated price.

        Raises:
            NotFoundError: If the calculation does not exist
            ValidationError: If the adjusted price would be negative
        """
        calculation = self._get(calculation_id)
        adjustment = _decimal(adjustment)
        adjusted_price = calculation.calculated_price + adjustment
        if adjusted_price < 0:
            raise ValidationError(f"Adjusted price cannot be negative ({adjusted_price})")

        calculation.is_manually_adjusted = True
        calculation.manual_adjustment = adjustment
        calculation.manual_adjustment_reason = reason
        calculation.adjusted_by = adjusted_by
        calculation.adjusted_at = self.engine.clock()
        calculation.calculated_price = to_money(adjusted_price)
        self.calculation_store.update(calculation)

        self.logger.info(
            "price_adjusted_manually",
            calculation_id=calculation_id,
            adjustment=str(adjustment),
            calculated_price=str(calculation.calculated_price),
            adjusted_by=adjusted_by,
        )
        return calculation

    def accept_calculation(self, calculation_id: str, agreed_price: Decimal, accepted_by: str) -> PricingCalculation:
        """
        Mark a calculation as accepted at an agreed price.

        Raises:
            NotFoundError: If the calculation does not exist
            ValidationError: If the agreed price is negative
        """
        calculation = self._get(calculation_id)
        agreed = _decimal(agreed_price)
        if agreed < 0:
            raise ValidationError("Agreed price cannot be negative")

        calculation.was_accepted = True
        calculation.accepted_at = self.engine.clock()
        calculation.final_agreed_price = agreed
        calculation.accepted_by = accepted_by
        if calculation.calculated_price > 0:
            calculation.price_variance_percentage = to_money(
                (agreed - calculation.calculated_price) / calculation.calculated_price * 100
            )
        self.calculation_store.update(calculation)

        self.logger.info(
            "pricing_calculation_accepted",
            calculation_id=calculation_id,
            agreed_price=str(agreed),
            variance_pct=str(calculation.price_variance_percentage),
        )
        return calculation

    def get_latest_calculation(self, load_id: str) -> Optional[PricingCalculation]:
        return self.calculation_store.get_latest_for_load(load_id)

    def get_calculation_history(self, load_id: str) -> list[PricingCalculation]:
        return self.calculation_store.get_history_for_load(load_id)

    def get_acceptance_rate(self, algorithm_version: Optional[str] = None) -> Decimal:
        """Percentage of calculations that were accepted (0 when there are none)."""
        calculations = self._calculations(algorithm_version)
        if not calculations:
            return Decimal("0")
        accepted = sum(1 for c in calculations if c.was_accepted)
        return to_money(Decimal(accepted) / Decimal(len(calculations)) * 100)

    def get_average_price_variance(self, algorithm_version: Optional[str] = None) -> Decimal:
        """Mean variance between agreed and calculated prices, in percent."""
        variances = [
            c.price_variance_percentage
            for c in self._calculations(algorithm_version)
            if c.was_accepted and c.price_variance_percentage is not None
        ]
        if not variances:
            return Decimal("0")
        return to_money(sum(variances, Decimal("0")) / len(variances))

    def _calculations(self, algorithm_version: Optional[str]) -> list[PricingCalculation]:
        return [
            c
            for c in self.calculation_store.list_all()
            if algorithm_version is None or c.algorithm_version == algorithm_version
        ]

    def _get(self, calculation_id: str) -> PricingCalculation:
        calculation = self.calculation_store.get_by_id(calculation_id)
        if calculation is None:
            raise NotFoundError("PricingCalculation", calculation_id)
        return calculation

    def _market_snapshot(self, load: Load) -> MarketSnapshot:
        available = None
        if self.driver_store is not None and load.pickup_location is not None:
            available = len(
                self.driver_store.get_available(load.pickup_location, self.matching_config.search_radius_km)
            )
        history = self.calculation_store.get_history_for_load(load.load_id)
        return MarketSnapshot(
            available_drivers=available,
            average_market_price=self.engine.estimate_market_price(
                load.load_type, load.total_distance_km, load.weight_kg
            ),
            sample_size=len(history),
        )


def _calculation_inputs(load: Load) -> dict[str, Any]:
    pickup = load.pickup_location
    delivery_stops = load.delivery_stops
    delivery = delivery_stops[-1].location if delivery_stops else None
    return {
        "distance_km": load.total_distance_km,
        "weight_kg": str(load.weight_kg),
        "volume_m3": str(load.volume_m3) if load.volume_m3 is not None else None,
        "load_type": load.load_type.value,
        "pickup_city": pickup.city if pickup else None,
        "delivery_city": delivery.city if delivery else None,
        "pickup_time": load.pickup_time.isoformat() if load.pickup_time else None,
        "delivery_deadline": load.delivery_deadline.isoformat() if load.delivery_deadline else None,
        "special_requirements": [r.value for r in load.special_requirements],
        "stop_count": len(load.stops),
    }
