"""
Integrations with services outside the core.

This module provides:
- Notifications: Driver notification delivery
"""

from .notifications import LoggingNotificationSender

__all__ = ["LoggingNotificationSender"]
