"""Capacity guard: decides whether a player may take a slot. Reads only."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hokej.models import (
    ACTIVE_STATUSES,
    Match,
    Player,
    PlayerMatchStatus,
    PlayerPosition,
    Registration,
    Team,
)
from hokej.schemas import PositionOverview, PositionSlotView
from hokej.services.errors import CapacityConflictError
from hokej.services.layout import capacity_for_mode, category_capacity, category_of

logger = logging.getLogger("hokej.capacity")


class SlotOutcome(enum.Enum):
    GRANTED = "granted"
    WAITLISTED = "waitlisted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SlotDecision:
    outcome: SlotOutcome
    reason: str = ""

    @property
    def granted(self) -> bool:
        return self.outcome is SlotOutcome.GRANTED


def effective_position(
    player: Optional[Player],
    position: Optional[PlayerPosition] = None,
    registration: Optional[Registration] = None,
) -> Optional[PlayerPosition]:
    """Requested position, else the one already on the registration, else the player's primary."""
    if position is not None:
        return position
    if registration is not None and registration.position_in_match is not None:
        return registration.position_in_match
    return player.primary_position if player is not None else None


async def registered_for_match(
    session: AsyncSession, match_id: int, exclude_id: Optional[int] = None
) -> list[Registration]:
    """REGISTERED rows of a match, optionally without one registration."""
    query = select(Registration).where(
        Registration.match_id == match_id,
        Registration.status == PlayerMatchStatus.REGISTERED,
    )
    if exclude_id is not None:
        query = query.where(Registration.id != exclude_id)
    result = await session.execute(query)
    return list(result.scalars().all())


async def count_registered(session: AsyncSession, match_id: int, exclude_id: Optional[int] = None) -> int:
    query = select(func.count(Registration.id)).where(
        Registration.match_id == match_id,
        Registration.status == PlayerMatchStatus.REGISTERED,
    )
    if exclude_id is not None:
        query = query.where(Registration.id != exclude_id)
    return (await session.execute(query)).scalar_one()


class CapacityGuard:
    """Checks a proposed slot against match total and per-team category capacity."""

    async def try_reserve_slot(
        self,
        session: AsyncSession,
        match: Optional[Match],
        player: Optional[Player],
        team: Optional[Team],
        *,
        position: Optional[PlayerPosition] = None,
        registration: Optional[Registration] = None,
        switch_team: bool = False,
    ) -> SlotDecision:
        """Decide GRANTED / WAITLISTED / REJECTED for `player` joining `team`.

        Lack of room never rejects: it waitlists. REJECTED is kept for
        structural problems (unknown match, an active registration on the other
        team without an explicit switch). The registration itself is never
        counted as occupying a slot.
        """
        if match is None:
            return SlotDecision(SlotOutcome.REJECTED, "unknown match")
        if (
            registration is not None
            and registration.status in ACTIVE_STATUSES
            and registration.team is not None
            and team is not None
            and registration.team is not team
            and not switch_team
        ):
            return SlotDecision(
                SlotOutcome.REJECTED,
                f"already registered for team {registration.team.value}",
            )

        exclude_id = registration.id if registration is not None else None
        registered = await registered_for_match(session, match.id, exclude_id)
        if len(registered) >= match.max_players:
            logger.debug("Match %s full (%d/%d)", match.id, len(registered), match.max_players)
            return SlotDecision(SlotOutcome.WAITLISTED, "match full")

        category = category_of(effective_position(player, position, registration))
        if category is None or team is None:
            return SlotDecision(SlotOutcome.GRANTED, "no position limit")

        capacity = category_capacity(match.mode, match.slots_per_team).get(category, 0)
        occupied = sum(
            1 for r in registered
            if r.team is team and category_of(r.position_in_match) is category
        )
        if occupied >= capacity:
            logger.debug(
                "Match %s team %s %s full (%d/%d)",
                match.id, team.value, category.value, occupied, capacity,
            )
            return SlotDecision(SlotOutcome.WAITLISTED, f"{category.value.lower()} slots full")
        return SlotDecision(SlotOutcome.GRANTED)

    async def check_total_capacity(
        self, session: AsyncSession, match: Match, registration: Optional[Registration] = None
    ) -> None:
        """Raise CapacityConflictError if one more REGISTERED would exceed the match total."""
        exclude_id = registration.id if registration is not None else None
        registered = await count_registered(session, match.id, exclude_id)
        if registered >= match.max_players:
            raise CapacityConflictError(
                f"Match {match.id} is full ({registered}/{match.max_players})",
                match_id=match.id,
                player_id=registration.player_id if registration is not None else None,
            )

    async def position_overview(
        self, session: AsyncSession, match: Match, team: Optional[Team] = None
    ) -> PositionOverview:
        """Per-position capacity and occupancy for both teams (or one)."""
        capacity = capacity_for_mode(match.mode, match.slots_per_team) if match.max_players > 0 else {}
        registered = await registered_for_match(session, match.id)
        teams = [team] if team is not None else list(Team)
        slots = []
        for position, per_team in capacity.items():
            for t in teams:
                occupied = sum(1 for r in registered if r.team is t and r.position_in_match is position)
                slots.append(
                    PositionSlotView(
                        position=position,
                        team=t,
                        capacity=per_team,
                        occupied=occupied,
                        free=max(0, per_team - occupied),
                    )
                )
        return PositionOverview(
            match_id=match.id,
            mode=match.mode.name if match.mode else None,
            max_players=match.max_players,
            slots=slots,
        )
