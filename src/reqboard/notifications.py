from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    message: str
    description: str | None = None


class Notifier(Protocol):
    """Sink for user-facing outcome summaries."""

    def notify(self, notification: Notification) -> None: ...


_LEVELS = {
    NotificationKind.SUCCESS: logging.INFO,
    NotificationKind.WARNING: logging.WARNING,
    NotificationKind.ERROR: logging.ERROR,
}


class LoggingNotifier:
    """Default sink: writes notifications to the ``reqboard.notifications`` logger."""

    def notify(self, notification: Notification) -> None:
        if notification.description:
            logger.log(_LEVELS[notification.kind], "%s (%s)", notification.message, notification.description)
        else:
            logger.log(_LEVELS[notification.kind], "%s", notification.message)


class CollectingNotifier:
    """Keeps every notification in memory, in order."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def kinds(self) -> list[NotificationKind]:
        return [item.kind for item in self.notifications]
