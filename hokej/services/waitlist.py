"""Waitlist promoter: moves the oldest fitting RESERVED player into a freed slot."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hokej.models import Match, Player, PlayerMatchStatus, PlayerPosition, PositionCategory, Registration, Team
from hokej.models.base import utcnow
from hokej.services.actor import SYSTEM_ACTOR, Actor
from hokej.services.capacity import CapacityGuard
from hokej.services.history import append_history
from hokej.services.layout import category_of, same_category
from hokej.services.notifications import Notification, NotificationKind

logger = logging.getLogger("hokej.waitlist")


@dataclass(frozen=True)
class Vacancy:
    """A freed slot. None fields mean "not restricted" (e.g. capacity was raised)."""

    team: Optional[Team] = None
    position: Optional[PlayerPosition] = None

    @classmethod
    def of(cls, registration: Registration) -> "Vacancy":
        return cls(registration.team, registration.position_in_match)


async def reserved_queue(session: AsyncSession, match_id: int) -> list[Registration]:
    """RESERVED registrations of a match, first reserved first."""
    result = await session.execute(
        select(Registration)
        .where(
            Registration.match_id == match_id,
            Registration.status == PlayerMatchStatus.RESERVED,
        )
        .order_by(Registration.registered_at, Registration.id)
    )
    return list(result.scalars().all())


def _target_position(candidate: Registration, player: Player, vacancy: Vacancy) -> Optional[PlayerPosition]:
    """Position the candidate would play in the vacancy, or None if it cannot fill it.

    Goalies only fill goalie slots and skaters never do. A candidate without a
    category (ANY) takes the freed skater position. A skater moves between
    defense and forward only when the player allows position changes.
    """
    current = candidate.position_in_match or player.primary_position
    freed_category = category_of(vacancy.position)
    current_category = category_of(current)
    if freed_category is None or same_category(current, vacancy.position):
        return current
    if PositionCategory.GOALIE in (freed_category, current_category):
        return None
    if current_category is None or player.can_change_position:
        return vacancy.position
    return None


def _target_team(candidate: Registration, player: Player, vacancy: Vacancy) -> tuple[bool, Optional[Team]]:
    if vacancy.team is None or candidate.team is None:
        return True, candidate.team or vacancy.team
    if candidate.team is vacancy.team:
        return True, candidate.team
    if player.can_switch_team:
        return True, vacancy.team
    return False, None


class WaitlistPromoter:
    """Promotes at most one RESERVED registration per call."""

    def __init__(self, guard: Optional[CapacityGuard] = None) -> None:
        self.guard = guard or CapacityGuard()

    async def promote(
        self,
        session: AsyncSession,
        match: Match,
        vacancy: Optional[Vacancy] = None,
        *,
        actor: Actor = SYSTEM_ACTOR,
        outbox: Optional[list[Notification]] = None,
        exclude_id: Optional[int] = None,
    ) -> Optional[Registration]:
        """Fill one vacancy from the waitlist. Must run inside the match lock.

        `exclude_id` is the registration that just freed the slot; it is
        skipped even when it now sits on the waitlist itself.
        """
        vacancy = vacancy or Vacancy()
        for candidate in await reserved_queue(session, match.id):
            if candidate.id == exclude_id:
                continue
            player = await session.get(Player, candidate.player_id)
            position = _target_position(candidate, player, vacancy)
            if position is None:
                continue
            fits_team, team = _target_team(candidate, player, vacancy)
            if not fits_team:
                continue
            decision = await self.guard.try_reserve_slot(
                session,
                match,
                player,
                team,
                position=position,
                registration=candidate,
                switch_team=True,
            )
            if not decision.granted:
                continue

            candidate.status = PlayerMatchStatus.REGISTERED
            candidate.team = team
            candidate.position_in_match = position
            candidate.changed_by = actor.name
            candidate.updated_at = utcnow()
            await append_history(session, candidate, "update")
            logger.info(
                "Promoted registration %s (player %s) in match %s to %s/%s",
                candidate.id,
                candidate.player_id,
                match.id,
                team.value if team else None,
                position.value if position else None,
            )
            if outbox is not None:
                outbox.append(
                    Notification(candidate.player_id, match.id, NotificationKind.PROMOTED, candidate.id)
                )
            return candidate

        logger.info(
            "No waitlisted player fits vacancy %s/%s in match %s",
            vacancy.team.value if vacancy.team else None,
            vacancy.position.value if vacancy.position else None,
            match.id,
        )
        return None
