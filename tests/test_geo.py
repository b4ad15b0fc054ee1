import pytest

from loadmatch.core.geo import distance_km
from loadmatch.data.models import Location

from .factories import ANKARA, ISTANBUL


def test_distance_to_self_is_zero():
    assert distance_km((41.0082, 28.9784), (41.0082, 28.9784)) == 0


def test_distance_is_symmetric():
    a = (41.0082, 28.9784)
    b = (39.9334, 32.8597)
    assert distance_km(a, b) == pytest.approx(distance_km(b, a), abs=1e-9)


def test_istanbul_to_ankara():
    assert distance_km(ISTANBUL, ANKARA) == pytest.approx(349.4, abs=1.0)


def test_accepts_locations_and_tuples_alike():
    assert distance_km(ISTANBUL, ANKARA) == pytest.approx(
        distance_km((ISTANBUL.latitude, ISTANBUL.longitude), (ANKARA.latitude, ANKARA.longitude))
    )


def test_colinear_points_on_a_meridian_add_up():
    a, b, c = (10.0, 30.0), (20.0, 30.0), (35.0, 30.0)
    ab = distance_km(a, b)
    bc = distance_km(b, c)
    ac = distance_km(a, c)
    assert ab < ac and bc < ac
    assert ab + bc == pytest.approx(ac, rel=1e-9)


def test_one_degree_of_latitude():
    assert distance_km((0.0, 0.0), (1.0, 0.0)) == pytest.approx(111.19, abs=0.01)


def test_antipodal_points_do_not_fail():
    assert distance_km((0.0, 0.0), (0.0, 180.0)) == pytest.approx(20015.09, abs=0.1)


def test_location_distance_to_delegates():
    here = Location(latitude=41.0, longitude=29.0)
    there = Location(latitude=41.0, longitude=29.0)
    assert here.distance_to(there) == 0
