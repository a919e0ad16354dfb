"""Fire-and-forget notifications emitted by the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from ..models import ViolationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointCreatedEvent:
    user_id: int
    point_type: ViolationType
    shift_date: date
    points: Decimal
    is_manual: bool

    @property
    def message(self) -> str:
        return (
            f"{self.point_type.label} point ({self.points}) recorded for "
            f"{self.shift_date.strftime('%b %d, %Y')}."
        )


class NotificationSink(Protocol):
    def send(self, event: PointCreatedEvent) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes notifications to the application log."""

    def send(self, event: PointCreatedEvent) -> None:
        logger.info("notify user %s: %s", event.user_id, event.message)


_sink: NotificationSink = LoggingNotificationSink()


def get_notification_sink() -> NotificationSink:
    return _sink


def set_notification_sink(sink: NotificationSink) -> None:
    """Swap the delivery channel (used by the host application and tests)."""

    global _sink
    _sink = sink


def notify_point_created(event: PointCreatedEvent) -> bool:
    """Deliver a "point created" notification; delivery failures never propagate."""

    try:
        _sink.send(event)
    except Exception:  # delivery must not roll back the ledger mutation
        logger.exception("point notification for user %s could not be delivered", event.user_id)
        return False
    return True
