"""
Matching and pricing decision engine.

This module contains:
- Pricing: Factor-based pricing with a bounded advisor adjustment, plus the audit ledger
- Vehicles: Rule-based vehicle class recommendations
- Scoring: Weighted driver/load compatibility
- Matching: Candidate search and the match lifecycle
- Loads: Load validation and lifecycle
"""

from .advisory import AdvisoryRunner
from .loads import LoadService, LoadStateMachine
from .matching import MatchOrchestrator, MatchStateMachine
from .pricing import PricingEngine, PricingLedger
from .scoring import DriverScorer
from .vehicles import VehicleMatcher

__all__ = [
    "AdvisoryRunner",
    "PricingEngine",
    "PricingLedger",
    "VehicleMatcher",
    "DriverScorer",
    "MatchOrchestrator",
    "MatchStateMachine",
    "LoadService",
    "LoadStateMachine",
]
