"""
Driver notification delivery.

SMS, push and email gateways are outside the core; this sender records each
notification as a structured log event so a log shipper can forward it.
"""

from collections import deque
from typing import Optional

import structlog

from loadmatch.core.logs import get_logger
from loadmatch.data.models import Match


class LoggingNotificationSender:
    """NotificationSender that emits one log event per notification."""

    def __init__(
        self,
        channel: str = "push",
        history_size: int = 1000,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.channel = channel
        self.logger = get_logger("notifications", logger)
        # Most recent match ids only
        self.sent: deque[str] = deque(maxlen=history_size)

    def notify_driver(self, match: Match) -> None:
        self.logger.info(
            "driver_notification_sent",
            channel=self.channel,
            match_id=match.match_id,
            match_code=match.match_code,
            driver_id=match.driver_id,
            load_id=match.load_id,
            match_score=str(match.match_score),
            expires_at=match.expires_at.isoformat(),
        )
        self.sent.append(match.match_id)
