"""Notification trigger boundary. Delivery (email, SMS) lives outside the engine."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from hokej.models.registration import PlayerMatchStatus

logger = logging.getLogger("hokej.notifications")


class NotificationKind(enum.Enum):
    REGISTERED = "registered"
    RESERVED = "reserved"
    SUBSTITUTE = "substitute"
    UNREGISTERED = "unregistered"
    EXCUSED = "excused"
    NO_EXCUSED = "no_excused"
    PROMOTED = "promoted"  # moved up from the waitlist
    REMINDER = "reminder"


_STATUS_KINDS = {
    PlayerMatchStatus.REGISTERED: NotificationKind.REGISTERED,
    PlayerMatchStatus.RESERVED: NotificationKind.RESERVED,
    PlayerMatchStatus.SUBSTITUTE: NotificationKind.SUBSTITUTE,
    PlayerMatchStatus.UNREGISTERED: NotificationKind.UNREGISTERED,
    PlayerMatchStatus.EXCUSED: NotificationKind.EXCUSED,
    PlayerMatchStatus.NO_EXCUSED: NotificationKind.NO_EXCUSED,
}


def kind_for_status(status: PlayerMatchStatus) -> Optional[NotificationKind]:
    """Notification to send after a player lands in `status`, if any."""
    return _STATUS_KINDS.get(status)


@dataclass(frozen=True)
class Notification:
    player_id: int
    match_id: int
    kind: NotificationKind
    registration_id: Optional[int] = None


class Notifier(Protocol):
    async def notify(self, notification: Notification) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the event in the log only."""

    async def notify(self, notification: Notification) -> None:
        logger.info(
            "Notify player %s: %s (match %s, registration %s)",
            notification.player_id,
            notification.kind.value,
            notification.match_id,
            notification.registration_id,
        )


async def dispatch(notifier: Notifier, notifications: list[Notification]) -> None:
    """Deliver queued notifications after commit. Failures are logged, never raised."""
    for notification in notifications:
        try:
            await notifier.notify(notification)
        except Exception:
            logger.exception(
                "Notifier failed for player %s (%s)", notification.player_id, notification.kind.value
            )
