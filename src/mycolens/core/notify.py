"""User notification sink."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

logger = logging.getLogger(__name__)


class Severity(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    severity: Severity = Severity.INFO


class Notifier(Protocol):
    """Fire-and-forget sink for user-visible notifications."""

    def notify(self, notification: Notification) -> None: ...


_LOG_LEVELS: dict[Severity, int] = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.ERROR: logging.WARNING,
}


class LoggingNotifier:
    """Writes notifications to the log and keeps the most recent ones."""

    def __init__(self, history: int = 20) -> None:
        self._recent: deque[Notification] = deque(maxlen=history)

    def notify(self, notification: Notification) -> None:
        self._recent.append(notification)
        logger.log(
            _LOG_LEVELS[notification.severity],
            "%s: %s",
            notification.title,
            notification.description,
        )

    @property
    def recent(self) -> list[Notification]:
        return list(self._recent)
