"""
Composition root - wires stores, engines and the optional advisor together.
"""

import threading
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Callable, Optional

import structlog

from loadmatch.core.clock import utc_now
from loadmatch.core.config import ConfigManager, get_config
from loadmatch.core.locks import KeyedLock
from loadmatch.core.logs import configure_logging, get_logger
from loadmatch.data.memory import (
    InMemoryDriverStore,
    InMemoryLoadStore,
    InMemoryMatchStore,
    InMemoryPricingCalculationStore,
)
from loadmatch.data.models import (
    Driver,
    Load,
    LoadStop,
    LoadType,
    Location,
    SpecialRequirement,
    StopType,
    WorkingHours,
)
from loadmatch.engine.advisory import AdvisoryRunner
from loadmatch.engine.loads import LoadService
from loadmatch.engine.matching import MatchOrchestrator
from loadmatch.engine.pricing import PricingEngine, PricingLedger
from loadmatch.engine.scoring import DriverScorer
from loadmatch.engine.vehicles import VehicleMatcher
from loadmatch.tools.notifications import LoggingNotificationSender


class Platform:
    """Every service of a running instance, sharing one set of stores."""

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        use_advisor: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Build the platform.

        Args:
            config_manager: Optional config manager (defaults to global instance)
            use_advisor: Attach the LLM pricing advisor (needs an API key)
            clock: Source of the current time for every service
        """
        self.config_manager = config_manager or get_config()
        pricing_config = self.config_manager.get_pricing_config()
        scoring_config = self.config_manager.get_scoring_config()
        matching_config = self.config_manager.get_matching_config()

        self.load_store = InMemoryLoadStore()
        self.driver_store = InMemoryDriverStore()
        self.match_store = InMemoryMatchStore()
        self.calculation_store = InMemoryPricingCalculationStore()
        self.locks = KeyedLock()

        advisor = None
        if use_advisor:
            from loadmatch.agents.advisor import PricingAdvisorAgent

            advisor = PricingAdvisorAgent(config_manager=self.config_manager)

        self.runner = AdvisoryRunner(timeout_seconds=pricing_config.advisor_timeout_seconds)
        self.pricing_engine = PricingEngine(pricing_config, advisor=advisor, runner=self.runner, clock=clock)
        self.pricing_ledger = PricingLedger(
            self.pricing_engine,
            self.calculation_store,
            driver_store=self.driver_store,
            matching_config=matching_config,
        )
        self.vehicle_matcher = VehicleMatcher(
            advisor=advisor,
            runner=self.runner,
            rates=self.config_manager.get_vehicle_rates(),
        )
        self.scorer = DriverScorer(scoring_config)
        self.notifier = LoggingNotificationSender()
        self.orchestrator = MatchOrchestrator(
            self.load_store,
            self.driver_store,
            self.match_store,
            scorer=self.scorer,
            notifier=self.notifier,
            config=matching_config,
            locks=self.locks,
            clock=clock,
        )
        self.load_service = LoadService(
            self.load_store,
            ledger=self.pricing_ledger,
            match_store=self.match_store,
            locks=self.locks,
            clock=clock,
        )

    def shutdown(self) -> None:
        self.runner.shutdown()


def create_platform(
    config_manager: Optional[ConfigManager] = None,
    use_advisor: bool = False,
    clock: Callable[[], datetime] = utc_now,
) -> Platform:
    return Platform(config_manager=config_manager, use_advisor=use_advisor, clock=clock)


def run_expiry_sweeper(
    orchestrator: MatchOrchestrator,
    interval_seconds: float,
    stop_event: threading.Event,
    logger: Optional[structlog.BoundLogger] = None,
) -> None:
    """
    Expire stale matches every interval until stop_event is set.

    Meant to run on its own thread. A failed sweep is logged and the loop
    carries on with the next one.
    """
    logger = get_logger("expiry_sweeper", logger)
    logger.info("expiry_sweeper_started", interval_seconds=interval_seconds)
    while not stop_event.is_set():
        try:
            orchestrator.process_expired_matches()
        except Exception as e:
            logger.error("expiry_sweep_failed", error=str(e))
        stop_event.wait(interval_seconds)
    logger.info("expiry_sweeper_stopped")


def start_expiry_sweeper(
    orchestrator: MatchOrchestrator, interval_seconds: float
) -> tuple[threading.Thread, threading.Event]:
    """Run the sweeper on a daemon thread. Set the returned event to stop it."""
    stop_event = threading.Event()
    thread = threading.Thread(
        target=run_expiry_sweeper,
        args=(orchestrator, interval_seconds, stop_event),
        name="match-expiry-sweeper",
        daemon=True,
    )
    thread.start()
    return thread, stop_event


def main() -> None:
    """Walk one load from creation to a confirmed match."""
    config = get_config()
    configure_logging(level=config.env.log_level, json_output=config.env.log_json)
    platform = create_platform(config)

    istanbul = Location(latitude=41.0082, longitude=28.9784, city="Istanbul")
    ankara = Location(latitude=39.9334, longitude=32.8597, city="Ankara")
    pickup = (utc_now() + timedelta(days=3)).replace(hour=12, minute=0, second=0, microsecond=0)

    for driver_id, lat, lon, years, rating, ratings in [
        ("drv-1", 41.02, 28.95, 12, Decimal("4.8"), 150),
        ("drv-2", 40.76, 29.92, 4, Decimal("4.1"), 40),
        ("drv-3", 41.05, 29.01, 0, Decimal("0"), 0),
    ]:
        platform.driver_store.save(
            Driver(
                driver_id=driver_id,
                driver_code=driver_id.upper(),
                current_location=Location(latitude=lat, longitude=lon),
                experience_years=years,
                average_rating=rating,
                total_ratings=ratings,
                working_hours=WorkingHours.weekdays(start=time(6, 0), end=time(22, 0)),
                current_vehicle_id=f"veh-{driver_id}",
            )
        )

    load = platform.load_service.create_load(
        Load(
            company_id="acme",
            title="Chilled goods Istanbul to Ankara",
            weight_kg=Decimal("2000"),
            volume_m3=Decimal("12"),
            load_type=LoadType.FOOD,
            special_requirements=[SpecialRequirement.COLD_CHAIN],
            stops=[
                LoadStop(
                    stop_order=1,
                    stop_type=StopType.PICKUP,
                    location=istanbul,
                    planned_time=pickup,
                    pickup_weight=Decimal("2000"),
                ),
                LoadStop(
                    stop_order=2,
                    stop_type=StopType.DELIVERY,
                    location=ankara,
                    latest_time=pickup + timedelta(hours=12),
                    delivery_weight=Decimal("2000"),
                ),
            ],
        ),
        created_by="demo",
    )
    load = platform.load_service.publish_load(load.load_id, published_by="demo")
    vehicles = platform.vehicle_matcher.recommend_vehicles(
        load.weight_kg, load.volume_m3, load.load_type, load.special_requirements
    )
    proposals = platform.orchestrator.propose_matches_for_load(load.load_id, max_matches=3)

    print("\n" + "=" * 80)
    print(f"LOAD {load.load_code}: {load.title}")
    print("=" * 80)
    print(f"Distance: {load.total_distance_km:.1f} km, est. {load.estimated_total_duration_minutes} min")
    print(f"Price:    {load.fixed_price} {platform.pricing_engine.config.currency}")
    print(f"Vehicle:  {vehicles[0].vehicle_type} (est. {vehicles[0].estimated_cost})")
    print()
    print("Candidates:")
    for match in proposals:
        print(f"  {match.driver_id}: {match.match_score}")

    if proposals:
        best = proposals[0]
        platform.orchestrator.notify_driver(best.match_id)
        platform.orchestrator.accept_match(best.match_id, accepted_by=best.driver_id)
        confirmed = platform.orchestrator.confirm_match(best.match_id, confirmed_by="ops")
        print()
        print(f"Confirmed {confirmed.match_code} with {confirmed.driver_id}")
    print("=" * 80)

    platform.shutdown()


if __name__ == "__main__":
    main()
