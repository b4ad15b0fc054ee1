"""
Driver Scorer - weighted driver/load compatibility.

Five sub-scores, each 0-100, are combined with configurable weights:
distance to pickup, rating, experience, availability and special
requirements. Scoring only reads its inputs, so batches fan out over a
thread pool.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog

from loadmatch.core.config import ScoringConfig
from loadmatch.core.geo import distance_km
from loadmatch.core.logs import get_logger
from loadmatch.data.models import Driver, Load, ScoreBreakdown
from loadmatch.data.models.load import HAZARDOUS_REQUIREMENTS

SCORE_PLACES = Decimal("0.01")


class DriverScorer:
    """Scores how well a driver fits a load."""

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.config = config or ScoringConfig()
        self.logger = get_logger("driver_scorer", logger)

    def score(self, load: Load, driver: Driver) -> Decimal:
        """
        Compatibility score between a load and a driver.

        Returns:
            Weighted score from 0 to 100, rounded to 2 decimals
        """
        return self.breakdown(load, driver).total

    def breakdown(self, load: Load, driver: Driver) -> ScoreBreakdown:
        """Every sub-score plus the weighted total."""
        cfg = self.config
        distance_score, km = self.distance_score(load, driver)
        rating_score = self.rating_score(driver)
        experience_score = self.experience_score(driver)
        availability_score = self.availability_score(load, driver)
        requirements_score = self.special_requirements_score(load, driver)

        total = (
            distance_score * cfg.distance_weight
            + rating_score * cfg.rating_weight
            + experience_score * cfg.experience_weight
            + availability_score * cfg.availability_weight
            + requirements_score * cfg.special_requirements_weight
        ).quantize(SCORE_PLACES, rounding=ROUND_HALF_UP)

        return ScoreBreakdown(
            distance_score=distance_score,
            rating_score=rating_score,
            experience_score=experience_score,
            availability_score=availability_score,
            special_requirements_score=requirements_score,
            distance_km=round(km, 2) if km is not None else None,
            total=total,
        )

    def score_many(self, load: Load, drivers: list[Driver]) -> list[tuple[Driver, ScoreBreakdown]]:
        """
        Score many drivers against one load in parallel.

        Returns:
            (driver, breakdown) pairs in the same order as drivers
        """
        if not drivers:
            return []
        workers = max(1, min(self.config.max_workers, len(drivers)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scorer") as pool:
            breakdowns = list(pool.map(lambda d: self.breakdown(load, d), drivers))
        return list(zip(drivers, breakdowns))

    def distance_score(self, load: Load, driver: Driver) -> tuple[Decimal, Optional[float]]:
        pickup = load.pickup_location
        if pickup is None or driver.current_location is None:
            return Decimal(self.config.unknown_location_score), None

        km = distance_km(driver.current_location, pickup)
        for max_km, score in self.config.distance_brackets:
            if km <= max_km:
                return Decimal(score), km
        return Decimal(self.config.distance_floor_score), km

    def rating_score(self, driver: Driver) -> Decimal:
        if driver.is_new_driver:
            return Decimal(self.config.new_driver_rating_score)
        return min(driver.average_rating * self.config.rating_scale, Decimal("100"))

    def experience_score(self, driver: Driver) -> Decimal:
        for min_years, score in self.config.experience_brackets:
            if driver.experience_years >= min_years:
                return Decimal(score)
        return Decimal(self.config.experience_floor_score)

    def availability_score(self, load: Load, driver: Driver) -> Decimal:
        cfg = self.config
        score = 100
        pickup = load.pickup_time
        deadline = load.delivery_deadline

        if driver.available_from and pickup and driver.available_from > pickup:
            score -= cfg.late_start_penalty
        if driver.available_until and deadline and driver.available_until < deadline:
            score -= cfg.early_finish_penalty
        if driver.working_hours and pickup and not driver.working_hours.is_available_at(pickup):
            score -= cfg.off_shift_penalty

        return Decimal(max(score, 0))

    def special_requirements_score(self, load: Load, driver: Driver) -> Decimal:
        # Cold-chain and equipment checks belong to the vehicle layer
        score = 100
        requirements = set(load.special_requirements)
        for stop in load.stops:
            requirements.update(stop.special_requirements)

        if requirements & HAZARDOUS_REQUIREMENTS and not driver.has_adr_license:
            score -= self.config.missing_adr_penalty

        return Decimal(max(score, 0))
