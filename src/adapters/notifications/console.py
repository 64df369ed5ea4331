"""
Console notification adapter - Implements NotificationChannel protocol.

This module provides a logging-based implementation of the domain's
notification port. Messages are logged and buffered so the HTTP layer can
return them with the response of the request that produced them.
"""

import logging
from collections import deque
from dataclasses import dataclass

from src.domain.ports import NotificationLevel

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.WARNING,
}


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    message: str


class ConsoleNotificationChannel:
    """
    Implements NotificationChannel protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    Publishing never blocks and never fails; the oldest buffered message
    is dropped once max_pending is reached.
    """

    def __init__(self, max_pending: int = 50) -> None:
        self._pending: deque[Notification] = deque(maxlen=max_pending)

    def publish(self, level: NotificationLevel, message: str) -> None:
        """
        Log the message and buffer it for the next drain().

        Args:
            level: Notification severity
            message: Human-readable text
        """
        logger.log(_LOG_LEVELS[level], "[NOTIFY] %s: %s", level.value, message)
        self._pending.append(Notification(level, message))

    def drain(self) -> list[Notification]:
        """Return and forget all buffered notifications, oldest first."""
        drained = list(self._pending)
        self._pending.clear()
        return drained
