"""
Match data model - a proposed or confirmed pairing of a load with a driver.
"""

import random
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from loadmatch.core.clock import UTCDateTime, ensure_utc, utc_now


class MatchStatus(str, Enum):
    """Match lifecycle status."""

    PROPOSED = "proposed"
    DRIVER_NOTIFIED = "driver_notified"
    DRIVER_ACCEPTED = "driver_accepted"
    DRIVER_REJECTED = "driver_rejected"
    EXPIRED = "expired"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


ACTIVE_MATCH_STATUSES = frozenset({MatchStatus.DRIVER_ACCEPTED, MatchStatus.CONFIRMED})
PENDING_MATCH_STATUSES = frozenset({MatchStatus.PROPOSED, MatchStatus.DRIVER_NOTIFIED})


def generate_match_code(now: Optional[datetime] = None) -> str:
    """Build a human-facing match code like MT202501011200004821."""
    now = now or utc_now()
    return f"MT{now:%Y%m%d%H%M%S}{random.randint(1000, 9999)}"


class ScoreBreakdown(BaseModel):
    """Sub-scores (0-100 each) behind a match score, with their weights applied in total."""

    distance_score: Decimal
    rating_score: Decimal
    experience_score: Decimal
    availability_score: Decimal
    special_requirements_score: Decimal
    distance_km: Optional[float] = None
    total: Decimal


class Match(BaseModel):
    """
    Links one load to one driver.

    Only DriverAccepted and Confirmed matches are active; at most one active
    match may exist per load and per driver.
    """

    match_id: str = Field(..., description="Unique match identifier")
    match_code: str = ""
    load_id: str
    driver_id: str
    vehicle_id: Optional[str] = None

    match_score: Decimal = Field(..., ge=0, le=100)
    matching_factors: Optional[ScoreBreakdown] = None

    status: MatchStatus = MatchStatus.PROPOSED
    proposed_at: UTCDateTime
    expires_at: UTCDateTime
    notified_at: Optional[UTCDateTime] = None
    responded_at: Optional[UTCDateTime] = None
    confirmed_at: Optional[UTCDateTime] = None
    cancelled_at: Optional[UTCDateTime] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    # Financials, filled in after completion
    agreed_price: Optional[Decimal] = None
    driver_commission: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None

    # Feedback
    load_owner_rating: Optional[int] = Field(None, ge=1, le=5)
    load_owner_feedback: Optional[str] = None
    driver_rating: Optional[int] = Field(None, ge=1, le=5)
    driver_feedback: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_MATCH_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_MATCH_STATUSES

    def is_expired_at(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.expires_at
