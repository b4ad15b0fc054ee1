import re
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from loadmatch.data.models import (
    Dimensions,
    Load,
    LoadStop,
    Match,
    MatchStatus,
    PricingFactors,
    SpecialRequirement,
    StopType,
    TimeSlot,
    WorkingHours,
)
from loadmatch.data.models.match import generate_match_code

from .factories import ANKARA, DEADLINE, ISTANBUL, NOW, PICKUP, make_driver, make_load


# ============================================================================
# Load
# ============================================================================


def test_valid_load_has_no_errors():
    assert make_load().validation_errors() == []


def test_json_round_trip_keeps_stops_and_requirements():
    load = make_load(
        special_requirements=[SpecialRequirement.FRAGILE, SpecialRequirement.HAZARDOUS],
        volume_m3=Decimal("12.5"),
    )
    load.stops[0].special_requirements = [SpecialRequirement.APPOINTMENT_REQUIRED]

    restored = Load.model_validate_json(load.model_dump_json())

    assert restored.model_dump() == load.model_dump()
    assert restored.special_requirements == [SpecialRequirement.FRAGILE, SpecialRequirement.HAZARDOUS]
    assert [s.stop_order for s in restored.stops] == [1, 2]
    assert restored.stops[0].special_requirements == [SpecialRequirement.APPOINTMENT_REQUIRED]


def test_requirements_are_deduplicated_in_order():
    load = make_load(
        special_requirements=[
            SpecialRequirement.HAZARDOUS,
            SpecialRequirement.FRAGILE,
            SpecialRequirement.HAZARDOUS,
        ]
    )
    assert load.special_requirements == [SpecialRequirement.HAZARDOUS, SpecialRequirement.FRAGILE]


def test_route_aggregates_follow_the_stops():
    load = make_load()
    assert load.total_distance_km == pytest.approx(ISTANBUL.distance_to(ANKARA), abs=0.01)
    # Two stops at 30 minutes each on top of driving at 60 km/h
    assert load.estimated_total_duration_minutes == int(round(load.total_distance_km + 60))
    assert load.earliest_pickup_time == PICKUP
    assert load.latest_delivery_time == DEADLINE
    assert load.pickup_time == PICKUP
    assert load.delivery_deadline == DEADLINE


def test_ordered_stops_sorts_by_stop_order():
    load = make_load()
    load.stops = list(reversed(load.stops))
    assert [s.stop_order for s in load.ordered_stops] == [1, 2]
    assert load.pickup_location == ISTANBUL


def test_missing_title_and_zero_weight_are_both_reported():
    load = make_load(title="  ", weight_kg=Decimal("0"))
    errors = load.validation_errors()
    assert "Title is required" in errors
    assert "Weight must be greater than 0" in errors


def test_load_without_stops():
    load = make_load(stops=[])
    assert load.validation_errors() == ["At least one stop is required"]


def test_stop_order_gap_is_rejected():
    load = make_load()
    load.stops[1].stop_order = 3
    assert any("contiguous" in e for e in load.validation_errors())


def test_unbalanced_weights_are_rejected():
    load = make_load()
    load.stops[1].delivery_weight = Decimal("900")
    assert any("must equal" in e for e in load.validation_errors())


def test_weight_balance_tolerates_a_hundredth_of_a_kg():
    load = make_load()
    load.stops[1].delivery_weight = Decimal("999.995")
    assert load.is_weight_balanced()


def test_pickup_after_deadline_is_rejected():
    load = make_load(deadline=PICKUP - timedelta(hours=1))
    assert "Pickup time must be before delivery deadline" in load.validation_errors()


def test_multi_stop_load_with_transfer_stop():
    load = make_load()
    load.stops = [
        LoadStop(
            stop_order=1,
            stop_type=StopType.PICKUP,
            location=ISTANBUL,
            planned_time=PICKUP,
            pickup_weight=Decimal("1000"),
        ),
        LoadStop(
            stop_order=2,
            stop_type=StopType.BOTH,
            location=ANKARA,
            pickup_weight=Decimal("200"),
            delivery_weight=Decimal("500"),
        ),
        LoadStop(
            stop_order=3,
            stop_type=StopType.DELIVERY,
            location=ISTANBUL,
            latest_time=DEADLINE,
            delivery_weight=Decimal("700"),
        ),
    ]
    assert load.validation_errors() == []
    assert len(load.pickup_stops) == 2
    assert len(load.delivery_stops) == 2
    assert load.total_distance_km == pytest.approx(2 * ISTANBUL.distance_to(ANKARA), abs=0.02)


# ============================================================================
# Stops and dimensions
# ============================================================================


def test_stop_rules():
    stop = LoadStop(
        stop_order=1,
        stop_type=StopType.PICKUP,
        earliest_time=PICKUP,
        latest_time=PICKUP,
    )
    errors = stop.validation_errors()
    assert "Stop 1: earliest time must be before latest time" in errors
    assert "Stop 1: pickup stops must have pickup weight" in errors
    assert "Stop 1: location is required" in errors


def test_stop_delay_allows_fifteen_minutes():
    stop = LoadStop(stop_order=1, stop_type=StopType.PICKUP, planned_time=PICKUP)
    assert not stop.is_delayed(PICKUP + timedelta(minutes=15))
    assert stop.is_delayed(PICKUP + timedelta(minutes=16))


def test_stop_time_window():
    stop = LoadStop(
        stop_order=1,
        stop_type=StopType.DELIVERY,
        earliest_time=PICKUP,
        latest_time=DEADLINE,
    )
    assert stop.is_within_time_window(PICKUP + timedelta(hours=1))
    assert not stop.is_within_time_window(DEADLINE + timedelta(minutes=1))


def test_stop_times_are_stored_as_utc():
    istanbul_time = timezone(timedelta(hours=3))
    stop = LoadStop(
        stop_order=1,
        stop_type=StopType.PICKUP,
        planned_time=datetime(2025, 6, 9, 15, 0, tzinfo=istanbul_time),
        latest_time=datetime(2025, 6, 9, 18, 0),
    )

    assert stop.planned_time == PICKUP
    assert stop.planned_time.tzinfo == timezone.utc
    assert stop.latest_time == datetime(2025, 6, 9, 18, 0, tzinfo=timezone.utc)
    assert not stop.is_delayed(datetime(2025, 6, 9, 12, 10))


def test_dimensions_fit_across_units():
    pallet = Dimensions(length=Decimal("120"), width=Decimal("80"), height=Decimal("100"), unit="CM")
    van = Dimensions(length=Decimal("3"), width=Decimal("1.7"), height=Decimal("1.4"))
    assert pallet.fits_in(van)
    assert not van.fits_in(pallet)
    assert pallet.in_meters().volume == Decimal("0.96")


# ============================================================================
# Driver
# ============================================================================


def test_apply_rating_updates_running_average():
    driver = make_driver(average_rating=Decimal("4.00"), total_ratings=2)
    driver.apply_rating(5)
    assert driver.total_ratings == 3
    assert driver.average_rating == Decimal("4.33")


def test_average_is_recomputed_from_the_exact_total():
    driver = make_driver()
    ratings = [5, 4, 4, 3, 5] * 40 + [1] * 7

    for rating in ratings:
        driver.apply_rating(rating)

    assert driver.total_ratings == 207
    assert driver.rating_total == Decimal("847")
    assert driver.average_rating == Decimal("4.09")


def test_imported_average_seeds_the_rating_total():
    driver = make_driver(average_rating=Decimal("4.8"), total_ratings=150)
    assert driver.rating_total == Decimal("720.0")

    driver.apply_rating(1)
    assert driver.average_rating == Decimal("4.77")


@pytest.mark.parametrize("rating", [0, 6])
def test_apply_rating_rejects_out_of_range(rating):
    driver = make_driver()
    with pytest.raises(ValueError):
        driver.apply_rating(rating)
    assert driver.total_ratings == 0


def test_weekday_schedule():
    hours = WorkingHours.weekdays()
    assert hours.is_available_at(PICKUP)  # Monday noon
    assert not hours.is_available_at(PICKUP + timedelta(days=5))  # Saturday
    assert not hours.is_available_at(PICKUP.replace(hour=19))


def test_overnight_slot():
    slot = TimeSlot(start_time=time(22, 0), end_time=time(6, 0))
    assert slot.covers(time(23, 30))
    assert slot.covers(time(5, 0))
    assert not slot.covers(time(12, 0))


def test_unknown_weekday_is_rejected():
    with pytest.raises(PydanticValidationError):
        WorkingHours(days={"funday": TimeSlot()})


def test_driver_window_and_schedule():
    driver = make_driver(
        available_from=PICKUP - timedelta(hours=1),
        working_hours=WorkingHours.weekdays(),
    )
    assert driver.is_available_at(PICKUP)
    assert not driver.is_available_at(PICKUP - timedelta(hours=2))
    assert driver.is_new_driver


# ============================================================================
# Match and pricing
# ============================================================================


def test_match_code_format():
    assert re.fullmatch(r"MT20250604120000\d{4}", generate_match_code(NOW))


def test_match_expiry_and_activity():
    match = Match(
        match_id="m-1",
        load_id="load-1",
        driver_id="drv-1",
        match_score=Decimal("80"),
        proposed_at=NOW,
        expires_at=NOW + timedelta(hours=24),
    )
    assert match.is_pending and not match.is_active
    assert not match.is_expired_at(NOW + timedelta(hours=23))
    assert match.is_expired_at(NOW + timedelta(hours=24))

    match.status = MatchStatus.CONFIRMED
    assert match.is_active


def test_match_score_must_stay_within_bounds():
    with pytest.raises(PydanticValidationError):
        Match(
            match_id="m-1",
            load_id="load-1",
            driver_id="drv-1",
            match_score=Decimal("101"),
            proposed_at=NOW,
            expires_at=datetime(2025, 6, 5, tzinfo=timezone.utc),
        )


def test_factors_default_to_neutral():
    factors = PricingFactors()
    assert factors.total_multiplier == Decimal("1")
    busy = PricingFactors(hazardous_factor=Decimal("1.5"), urgency_factor=Decimal("1.2"))
    assert busy.total_multiplier == Decimal("1.8")
