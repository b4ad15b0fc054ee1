import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from loadmatch.core.config import PricingConfig
from loadmatch.core.errors import NotFoundError, ValidationError
from loadmatch.data.models import LoadType, SpecialRequirement
from loadmatch.engine.advisory import AdvisoryRunner
from loadmatch.engine.pricing import PricingEngine, PricingLedger, to_money

from .factories import NOW, PICKUP, FakeClock, make_driver, make_load


def price(engine, **overrides):
    """Price 100 km / 1000 kg of general cargo picked up next Monday noon."""
    args = {
        "distance_km": 100,
        "weight_kg": Decimal("1000"),
        "volume_m3": None,
        "load_type": LoadType.GENERAL_CARGO,
        "special_requirements": [],
        "pickup_time": PICKUP,
        "delivery_time": PICKUP + timedelta(days=1),
        "now": NOW,
    }
    args.update(overrides)
    return engine.calculate_price(**args)


@pytest.fixture
def engine():
    return PricingEngine(PricingConfig(), clock=FakeClock())


# ============================================================================
# Deterministic pricing
# ============================================================================


def test_base_price_without_factors(engine):
    result = price(engine)
    assert result.base_price == Decimal("500.00")
    assert result.final_price == Decimal("500.00")
    assert result.recommended_price == Decimal("500.00")
    assert result.total_multiplier == Decimal("1")
    assert result.algorithm_version == "v2.0-factors"
    assert not result.was_ai_optimized


def test_hazardous_cargo(engine):
    result = price(engine, load_type=LoadType.HAZARDOUS, special_requirements=[SpecialRequirement.HAZARDOUS])
    assert result.factors.hazardous_factor == Decimal("1.5")
    assert result.final_price == Decimal("750.00")


def test_hazardous_and_oversized(engine):
    result = price(
        engine,
        special_requirements=[SpecialRequirement.HAZARDOUS, SpecialRequirement.OVERSIZED],
    )
    assert result.factors.special_requirements_factor == Decimal("1.05")
    assert result.final_price == Decimal("787.50")


@pytest.mark.parametrize(
    "requirement",
    [
        SpecialRequirement.COLD_CHAIN,
        SpecialRequirement.REFRIGERATED,
        SpecialRequirement.TEMPERATURE_CONTROLLED,
    ],
)
def test_refrigerated_requirements(engine, requirement):
    assert price(engine, special_requirements=[requirement]).final_price == Decimal("650.00")


def test_other_requirements_add_five_percent_each(engine):
    result = price(
        engine,
        special_requirements=[
            SpecialRequirement.FRAGILE,
            SpecialRequirement.HIGH_VALUE,
            SpecialRequirement.NONE,
            SpecialRequirement.FRAGILE,
        ],
    )
    assert result.factors.special_requirements_factor == Decimal("1.10")
    assert result.final_price == Decimal("550.00")


@pytest.mark.parametrize(
    "volume, expected",
    [
        (Decimal("20"), Decimal("500.00")),
        (Decimal("20.01"), Decimal("575.00")),
    ],
)
def test_large_volume(engine, volume, expected):
    assert price(engine, volume_m3=volume).final_price == expected


def test_weekend_pickup(engine):
    saturday = datetime(2025, 6, 7, 12, 0)
    result = price(engine, pickup_time=saturday)
    assert result.factors.weekend_factor == Decimal("1.25")
    assert result.final_price == Decimal("625.00")


@pytest.mark.parametrize(
    "hour, minute, expected",
    [
        (8, 30, Decimal("575.00")),
        (17, 0, Decimal("575.00")),
        (10, 0, Decimal("500.00")),
        (19, 0, Decimal("500.00")),
    ],
)
def test_peak_hours(engine, hour, minute, expected):
    assert price(engine, pickup_time=PICKUP.replace(hour=hour, minute=minute)).final_price == expected


@pytest.mark.parametrize(
    "pickup, factor",
    [
        (NOW + timedelta(hours=10), Decimal("1.4")),
        (NOW - timedelta(hours=1), Decimal("1.4")),
        (NOW + timedelta(hours=36), Decimal("1.2")),
        (NOW + timedelta(hours=48), Decimal("1.0")),
    ],
)
def test_urgency(engine, pickup, factor):
    assert price(engine, pickup_time=pickup).factors.urgency_factor == factor


def test_aware_pickup_times_from_any_zone(engine):
    istanbul_time = timezone(timedelta(hours=3))
    local_pickup = PICKUP.astimezone(istanbul_time)

    result = price(engine, pickup_time=local_pickup, delivery_time=local_pickup + timedelta(hours=8))

    assert result.final_price == Decimal("500.00")
    assert result.factors.urgency_factor == Decimal("1.0")


def test_naive_times_are_read_as_utc(engine):
    naive_pickup = (NOW + timedelta(hours=10)).replace(tzinfo=None)
    result = price(engine, pickup_time=naive_pickup, delivery_time=naive_pickup + timedelta(hours=8))
    assert result.factors.urgency_factor == Decimal("1.4")


def test_default_clock_is_utc():
    result = PricingEngine().calculate_price(
        100,
        Decimal("1000"),
        None,
        LoadType.GENERAL_CARGO,
        [],
        datetime.now(timezone.utc) + timedelta(days=3),
        datetime.now(timezone.utc) + timedelta(days=4),
    )
    assert result.factors.urgency_factor == Decimal("1.0")
    assert result.calculated_at.tzinfo == timezone.utc


def test_every_factor_is_reported(engine):
    factors = price(engine).factors.model_dump()
    assert set(factors) == {
        "volume_factor",
        "hazardous_factor",
        "refrigerated_factor",
        "weekend_factor",
        "peak_hours_factor",
        "urgency_factor",
        "special_requirements_factor",
        "total_multiplier",
    }


def test_invalid_inputs_are_all_reported(engine):
    with pytest.raises(ValidationError) as exc_info:
        price(engine, distance_km=-1, weight_kg=Decimal("0"), volume_m3=Decimal("-2"))
    assert exc_info.value.errors == [
        "Distance cannot be negative",
        "Weight must be greater than 0",
        "Volume cannot be negative",
    ]


def test_zero_distance_prices_weight_only(engine):
    assert price(engine, distance_km=0).final_price == Decimal("150.00")


def test_price_load_uses_stop_requirements():
    engine = PricingEngine(clock=FakeClock())
    load = make_load()
    load.stops[0].special_requirements = [SpecialRequirement.FLAMMABLE_LIQUID]

    result = engine.price_load(load)

    expected_base = to_money(Decimal(str(load.total_distance_km)) * Decimal("3.5") + Decimal("150"))
    assert result.base_price == expected_base
    assert result.factors.hazardous_factor == Decimal("1.5")
    assert result.calculated_at == NOW


def test_market_estimate_by_load_type(engine):
    assert engine.estimate_market_price(LoadType.HAZARDOUS, 100, Decimal("1000")) == Decimal("700.00")
    assert engine.estimate_market_price(LoadType.GENERAL_CARGO, 100, Decimal("1000")) == Decimal("500.00")
    assert engine.estimate_market_price(LoadType.FOOD, 100, Decimal("1000")) == Decimal("550.00")


# ============================================================================
# Parameter updates
# ============================================================================


def test_update_parameters_returns_new_engine(engine):
    updated = engine.update_parameters(distance_rate=Decimal("4.0"))

    assert updated.config.algorithm_version == "v2.0-factors-r1"
    assert price(updated).final_price == Decimal("550.00")
    # The original engine keeps pricing the old way
    assert engine.config.algorithm_version == "v2.0-factors"
    assert price(engine).final_price == Decimal("500.00")

    again = updated.update_parameters(weight_rate="0.2")
    assert again.config.algorithm_version == "v2.0-factors-r2"


def test_update_parameters_keeps_explicit_version(engine):
    updated = engine.update_parameters(hazardous_factor="1.6", algorithm_version="v3.0")
    assert updated.config.algorithm_version == "v3.0"


def test_update_parameters_rejects_unknown_names(engine):
    with pytest.raises(ValidationError, match="Unknown pricing parameter: fuel_rate"):
        engine.update_parameters(fuel_rate=Decimal("1"))


def test_update_parameters_rejects_bad_values(engine):
    with pytest.raises(ValidationError):
        engine.update_parameters(distance_rate="not-a-number")


# ============================================================================
# Advisor bounds
# ============================================================================


@pytest.fixture
def advisor():
    return MagicMock()


@pytest.mark.parametrize(
    "suggested, expected",
    [
        (Decimal("10000"), Decimal("1000.00")),
        (Decimal("1"), Decimal("250.00")),
        (Decimal("-50"), Decimal("250.00")),
        (Decimal("600"), Decimal("600.00")),
        ("725.5", Decimal("725.50")),
        (612.345, Decimal("612.35")),
    ],
)
def test_advisor_price_is_clamped(advisor, suggested, expected):
    advisor.optimize_price.return_value = suggested
    engine = PricingEngine(advisor=advisor, clock=FakeClock())

    result = price(engine, use_ai_optimization=True)

    assert result.final_price == Decimal("500.00")
    assert result.optimized_price == expected
    assert result.recommended_price == expected
    assert Decimal("250.00") <= result.recommended_price <= Decimal("1000.00")
    assert result.was_ai_optimized


def test_advisor_sees_the_deterministic_price(advisor):
    advisor.optimize_price.return_value = Decimal("520")
    engine = PricingEngine(advisor=advisor, clock=FakeClock())

    price(engine, use_ai_optimization=True)

    args = advisor.optimize_price.call_args.args
    assert args[0] == Decimal("500.00")
    assert args[4] == LoadType.GENERAL_CARGO


@pytest.mark.parametrize(
    "answer",
    ["abc", float("nan"), Decimal("Infinity"), True, None, {"price": 500}],
)
def test_unusable_advisor_answer_falls_back(advisor, answer):
    advisor.optimize_price.return_value = answer
    engine = PricingEngine(advisor=advisor, clock=FakeClock())

    result = price(engine, use_ai_optimization=True)

    assert result.optimized_price is None
    assert result.recommended_price == Decimal("500.00")
    assert "deterministic price used" in result.ai_optimization_details


def test_advisor_exception_falls_back(advisor):
    advisor.optimize_price.side_effect = RuntimeError("upstream 503")
    engine = PricingEngine(advisor=advisor, clock=FakeClock())

    result = price(engine, use_ai_optimization=True)

    assert result.recommended_price == Decimal("500.00")
    assert "upstream 503" in result.ai_optimization_details


def test_slow_advisor_times_out(advisor):
    def slow(*args):
        time.sleep(0.5)
        return Decimal("900")

    advisor.optimize_price.side_effect = slow
    runner = AdvisoryRunner(timeout_seconds=0.05)
    engine = PricingEngine(advisor=advisor, runner=runner, clock=FakeClock())

    try:
        result = price(engine, use_ai_optimization=True)
    finally:
        runner.shutdown()

    assert result.optimized_price is None
    assert result.recommended_price == Decimal("500.00")
    assert "timed out" in result.ai_optimization_details


def test_advisor_not_consulted_unless_asked(advisor):
    engine = PricingEngine(advisor=advisor, clock=FakeClock())
    price(engine)
    advisor.optimize_price.assert_not_called()


def test_optimization_without_advisor(engine):
    result = price(engine, use_ai_optimization=True)
    assert result.optimized_price is None
    assert result.ai_optimization_details == "No pricing advisor configured"


# ============================================================================
# Ledger
# ============================================================================


@pytest.fixture
def ledger(engine, calculation_store, driver_store):
    driver_store.save(make_driver("drv-1"))
    driver_store.save(make_driver("drv-2"))
    return PricingLedger(engine, calculation_store, driver_store=driver_store)


def test_quote_records_calculation(ledger):
    load = make_load()

    calculation = ledger.quote_load(load)

    assert calculation.load_id == load.load_id
    assert calculation.calculated_price == calculation.recommended_price == calculation.final_price
    assert calculation.calculated_at == NOW
    assert calculation.market_snapshot.available_drivers == 2
    assert calculation.market_snapshot.sample_size == 0
    assert calculation.calculation_inputs["pickup_city"] == "Istanbul"
    assert calculation.calculation_inputs["delivery_city"] == "Ankara"
    assert calculation.calculation_inputs["stop_count"] == 2
    assert ledger.get_latest_calculation(load.load_id).calculation_id == calculation.calculation_id


def test_history_is_newest_first(ledger):
    load = make_load()
    first = ledger.quote_load(load)
    second = ledger.quote_load(load)

    history = ledger.get_calculation_history(load.load_id)

    assert [c.calculation_id for c in history] == [second.calculation_id, first.calculation_id]
    assert second.market_snapshot.sample_size == 1


def test_manual_adjustment(ledger):
    calculation = ledger.quote_load(make_load())

    adjusted = ledger.adjust_price_manually(
        calculation.calculation_id, Decimal("-100"), reason="loyal customer", adjusted_by="ops"
    )

    assert adjusted.is_manually_adjusted
    assert adjusted.calculated_price == calculation.calculated_price - Decimal("100")
    assert adjusted.recommended_price == calculation.recommended_price
    stored = ledger.get_latest_calculation(calculation.load_id)
    assert stored.manual_adjustment == Decimal("-100")
    assert stored.adjusted_at == NOW


def test_adjustment_cannot_go_negative(ledger):
    calculation = ledger.quote_load(make_load())

    with pytest.raises(ValidationError):
        ledger.adjust_price_manually(
            calculation.calculation_id, -(calculation.calculated_price + 1), reason="x", adjusted_by="ops"
        )

    assert not ledger.get_latest_calculation(calculation.load_id).is_manually_adjusted


def test_unknown_calculation(ledger):
    with pytest.raises(NotFoundError):
        ledger.adjust_price_manually("missing", Decimal("10"), reason="x", adjusted_by="ops")
    with pytest.raises(NotFoundError):
        ledger.accept_calculation("missing", Decimal("10"), accepted_by="ops")


def test_acceptance_and_variance(ledger):
    accepted = ledger.quote_load(make_load("load-1"))
    ledger.quote_load(make_load("load-2"))

    result = ledger.accept_calculation(
        accepted.calculation_id, accepted.calculated_price * Decimal("1.1"), accepted_by="shipper"
    )

    assert result.was_accepted
    assert result.price_variance_percentage == Decimal("10.00")
    assert ledger.get_acceptance_rate() == Decimal("50.00")
    assert ledger.get_average_price_variance() == Decimal("10.00")
    assert ledger.get_acceptance_rate("v9") == Decimal("0")


def test_variance_is_measured_against_adjusted_price(ledger):
    calculation = ledger.quote_load(make_load())
    adjusted = ledger.adjust_price_manually(
        calculation.calculation_id, Decimal("50"), reason="toll road", adjusted_by="ops"
    )

    result = ledger.accept_calculation(calculation.calculation_id, adjusted.calculated_price, accepted_by="shipper")

    assert result.price_variance_percentage == Decimal("0.00")
