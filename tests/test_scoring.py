from datetime import timedelta
from decimal import Decimal

import pytest

from loadmatch.core.config import ScoringConfig
from loadmatch.data.models import Location, SpecialRequirement, WorkingHours
from loadmatch.engine.scoring import DriverScorer

from .factories import ANKARA, DEADLINE, PICKUP, make_driver, make_load


@pytest.fixture
def scorer():
    return DriverScorer()


def test_new_driver_next_door(scorer):
    breakdown = scorer.breakdown(make_load(), make_driver())

    assert breakdown.distance_km == pytest.approx(5.0, abs=0.1)
    assert breakdown.distance_score == Decimal("100")
    assert breakdown.rating_score == Decimal("60")
    assert breakdown.experience_score == Decimal("50")
    assert breakdown.availability_score == Decimal("100")
    assert breakdown.special_requirements_score == Decimal("100")
    assert breakdown.total == Decimal("80.00")


def test_veteran_driver_next_door(scorer):
    driver = make_driver(experience_years=12, average_rating=Decimal("4.8"), total_ratings=150)
    assert scorer.score(make_load(), driver) == Decimal("99.00")


def test_driver_in_ankara(scorer):
    breakdown = scorer.breakdown(make_load(), make_driver(location=ANKARA))
    assert breakdown.distance_score == Decimal("50")
    assert breakdown.total == Decimal("65.00")


@pytest.mark.parametrize(
    "latitude_offset, expected",
    [
        (0.3, Decimal("90")),  # ~33 km
        (0.8, Decimal("80")),  # ~89 km
        (1.5, Decimal("70")),  # ~167 km
        (5.0, Decimal("20")),  # ~556 km
    ],
)
def test_distance_brackets(scorer, latitude_offset, expected):
    location = Location(latitude=41.0082 + latitude_offset, longitude=28.9784)
    score, _ = scorer.distance_score(make_load(), make_driver(location=location))
    assert score == expected


def test_unknown_location_scores_zero(scorer):
    score, km = scorer.distance_score(make_load(), make_driver(location=None))
    assert score == Decimal("0")
    assert km is None


@pytest.mark.parametrize(
    "years, expected",
    [(0, 50), (1, 70), (3, 80), (5, 90), (9, 90), (10, 100)],
)
def test_experience_brackets(scorer, years, expected):
    assert scorer.experience_score(make_driver(experience_years=years)) == Decimal(expected)


def test_rating_is_capped_at_100():
    scorer = DriverScorer(ScoringConfig(rating_scale=Decimal("25")))
    driver = make_driver(average_rating=Decimal("5"), total_ratings=3)
    assert scorer.rating_score(driver) == Decimal("100")


def test_availability_penalties(scorer):
    load = make_load()
    late = make_driver(available_from=PICKUP + timedelta(hours=1))
    short = make_driver(available_until=DEADLINE - timedelta(hours=1))
    both = make_driver(
        available_from=PICKUP + timedelta(hours=1),
        available_until=DEADLINE - timedelta(hours=1),
    )
    weekends_only = make_driver(
        working_hours=WorkingHours(days={"saturday": {}, "sunday": {}}),
    )

    assert scorer.availability_score(load, late) == Decimal("70")
    assert scorer.availability_score(load, short) == Decimal("70")
    assert scorer.availability_score(load, both) == Decimal("40")
    assert scorer.availability_score(load, weekends_only) == Decimal("80")


def test_availability_never_goes_negative():
    scorer = DriverScorer(ScoringConfig(late_start_penalty=80, early_finish_penalty=80))
    driver = make_driver(
        available_from=PICKUP + timedelta(hours=1),
        available_until=DEADLINE - timedelta(hours=1),
    )
    assert scorer.availability_score(make_load(), driver) == Decimal("0")


def test_hazardous_load_without_adr(scorer):
    load = make_load(special_requirements=[SpecialRequirement.CORROSIVE_MATERIAL])

    assert scorer.special_requirements_score(load, make_driver()) == Decimal("50")
    assert scorer.special_requirements_score(load, make_driver(has_adr_license=True)) == Decimal("100")
    assert scorer.score(load, make_driver()) == Decimal("75.00")


def test_hazardous_stop_counts_too(scorer):
    load = make_load()
    load.stops[1].special_requirements = [SpecialRequirement.HAZARDOUS]
    assert scorer.special_requirements_score(load, make_driver()) == Decimal("50")


def test_custom_weights():
    scorer = DriverScorer(
        ScoringConfig(
            distance_weight=Decimal("1"),
            rating_weight=Decimal("0"),
            experience_weight=Decimal("0"),
            availability_weight=Decimal("0"),
            special_requirements_weight=Decimal("0"),
        )
    )
    assert scorer.score(make_load(), make_driver(location=ANKARA)) == Decimal("50.00")


def test_score_many_keeps_input_order(scorer):
    drivers = [
        make_driver("far", location=ANKARA),
        make_driver("near"),
        make_driver("veteran", experience_years=15, average_rating=Decimal("4.9"), total_ratings=80),
    ]

    scored = scorer.score_many(make_load(), drivers)

    assert [d.driver_id for d, _ in scored] == ["far", "near", "veteran"]
    assert [b.total for _, b in scored] == [scorer.score(make_load(), d) for d in drivers]


def test_score_many_with_no_drivers(scorer):
    assert scorer.score_many(make_load(), []) == []
