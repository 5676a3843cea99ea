"""Pre-match reminders for registered players."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import config
from hokej.models import Match, MatchStatus, PlayerMatchStatus, Registration
from hokej.models.base import async_session_factory, utcnow
from hokej.services.locks import MatchLocks
from hokej.services.notifications import LoggingNotifier, Notification, NotificationKind, Notifier, dispatch

logger = logging.getLogger("hokej.reminders")


class ReminderScanner:
    """Sends one reminder per REGISTERED player shortly before the match.

    Meant to be called periodically (e.g. every few minutes). Calls are
    idempotent: `reminder_sent` is set in the same transaction.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        notifier: Optional[Notifier] = None,
        locks: Optional[MatchLocks] = None,
    ) -> None:
        self.session_factory = session_factory or async_session_factory
        self.notifier = notifier or LoggingNotifier()
        self.locks = locks or MatchLocks()

    def _due(self, match: Match, now: datetime) -> bool:
        minutes_to_start = (match.starts_at - now).total_seconds() / 60
        latest = config.REMINDER_HOURS_BEFORE * 60
        return latest - config.REMINDER_TOLERANCE_MINUTES <= minutes_to_start <= latest

    async def process_match_reminders(self, now: Optional[datetime] = None) -> int:
        """Queue reminders for matches starting about REMINDER_HOURS_BEFORE from now. Returns count sent."""
        now = now or utcnow()
        horizon = now + timedelta(hours=config.REMINDER_HORIZON_HOURS)

        async with self.session_factory() as session:
            result = await session.execute(
                select(Match.id)
                .where(
                    Match.starts_at >= now,
                    Match.starts_at <= horizon,
                    Match.status == MatchStatus.SCHEDULED,
                )
                .order_by(Match.starts_at)
            )
            match_ids = list(result.scalars().all())

        sent = 0
        for match_id in match_ids:
            sent += await self._remind_match(match_id, now)
        if sent:
            logger.info("Sent %d match reminder(s)", sent)
        return sent

    async def _remind_match(self, match_id: int, now: datetime) -> int:
        outbox: list[Notification] = []
        async with self.locks.hold(match_id):
            async with self.session_factory() as session:
                async with session.begin():
                    match = await session.get(Match, match_id)
                    if match is None or match.status is MatchStatus.CANCELED or not self._due(match, now):
                        return 0
                    result = await session.execute(
                        select(Registration).where(
                            Registration.match_id == match_id,
                            Registration.status == PlayerMatchStatus.REGISTERED,
                            Registration.reminder_sent.is_(False),
                        )
                    )
                    for registration in result.scalars().all():
                        registration.reminder_sent = True
                        outbox.append(
                            Notification(
                                registration.player_id, match_id, NotificationKind.REMINDER, registration.id
                            )
                        )
        await dispatch(self.notifier, outbox)
        logger.debug("Match %s: %d reminder(s)", match_id, len(outbox))
        return len(outbox)
