"""
Core infrastructure for the load matching platform.

This module provides:
- Clock: UTC time handling
- Config: Configuration management
- Errors: Domain error hierarchy
- Geo: Great-circle distance
- Locks: Per-entity locking for match transitions
- Logs: structlog setup
"""

from .clock import UTCDateTime, utc_now
from .config import (
    ConfigManager,
    MatchingConfig,
    PricingConfig,
    ScoringConfig,
    get_config,
)
from .errors import (
    AdvisoryFailure,
    ConcurrencyConflict,
    InvalidStateError,
    LoadMatchError,
    NotFoundError,
    ValidationError,
)
from .geo import distance_km
from .locks import KeyedLock

__all__ = [
    "ConfigManager",
    "get_config",
    "PricingConfig",
    "ScoringConfig",
    "MatchingConfig",
    "LoadMatchError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "AdvisoryFailure",
    "ConcurrencyConflict",
    "distance_km",
    "KeyedLock",
    "UTCDateTime",
    "utc_now",
]
