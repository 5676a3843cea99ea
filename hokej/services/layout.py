"""Ice position layout and per-team position capacity for a match mode."""
from __future__ import annotations

import logging
from typing import Optional

from hokej.models.match import MatchMode
from hokej.models.player import PlayerPosition, PositionCategory

logger = logging.getLogger("hokej.layout")

# Canonical ice positions per mode, in the order capacity is handed out
MODE_POSITIONS: dict[MatchMode, tuple[PlayerPosition, ...]] = {
    MatchMode.THREE_ON_THREE_NO_GOALIE: (
        PlayerPosition.WING_LEFT,
        PlayerPosition.WING_RIGHT,
        PlayerPosition.DEFENSE,
    ),
    MatchMode.THREE_ON_THREE_WITH_GOALIE: (
        PlayerPosition.GOALIE,
        PlayerPosition.WING_LEFT,
        PlayerPosition.WING_RIGHT,
        PlayerPosition.DEFENSE,
    ),
    MatchMode.FOUR_ON_FOUR_NO_GOALIE: (
        PlayerPosition.WING_LEFT,
        PlayerPosition.WING_RIGHT,
        PlayerPosition.DEFENSE_LEFT,
        PlayerPosition.DEFENSE_RIGHT,
    ),
    MatchMode.FOUR_ON_FOUR_WITH_GOALIE: (
        PlayerPosition.GOALIE,
        PlayerPosition.WING_LEFT,
        PlayerPosition.WING_RIGHT,
        PlayerPosition.DEFENSE_LEFT,
        PlayerPosition.DEFENSE_RIGHT,
    ),
    MatchMode.FIVE_ON_FIVE_NO_GOALIE: (
        PlayerPosition.WING_LEFT,
        PlayerPosition.CENTER,
        PlayerPosition.WING_RIGHT,
        PlayerPosition.DEFENSE_LEFT,
        PlayerPosition.DEFENSE_RIGHT,
    ),
    MatchMode.FIVE_ON_FIVE_WITH_GOALIE: (
        PlayerPosition.GOALIE,
        PlayerPosition.WING_LEFT,
        PlayerPosition.CENTER,
        PlayerPosition.WING_RIGHT,
        PlayerPosition.DEFENSE_LEFT,
        PlayerPosition.DEFENSE_RIGHT,
    ),
    MatchMode.SIX_ON_SIX_NO_GOALIE: (
        PlayerPosition.WING_LEFT,
        PlayerPosition.CENTER,
        PlayerPosition.WING_RIGHT,
        PlayerPosition.DEFENSE,
        PlayerPosition.DEFENSE_LEFT,
        PlayerPosition.DEFENSE_RIGHT,
    ),
}

# Used when a match has no mode set
DEFAULT_POSITIONS: tuple[PlayerPosition, ...] = (
    PlayerPosition.GOALIE,
    PlayerPosition.DEFENSE_LEFT,
    PlayerPosition.DEFENSE_RIGHT,
    PlayerPosition.WING_LEFT,
    PlayerPosition.CENTER,
    PlayerPosition.WING_RIGHT,
)

# The one position -> category table. ANY has no category.
POSITION_CATEGORIES: dict[PlayerPosition, PositionCategory] = {
    PlayerPosition.GOALIE: PositionCategory.GOALIE,
    PlayerPosition.DEFENSE_LEFT: PositionCategory.DEFENSE,
    PlayerPosition.DEFENSE_RIGHT: PositionCategory.DEFENSE,
    PlayerPosition.DEFENSE: PositionCategory.DEFENSE,
    PlayerPosition.CENTER: PositionCategory.FORWARD,
    PlayerPosition.WING_LEFT: PositionCategory.FORWARD,
    PlayerPosition.WING_RIGHT: PositionCategory.FORWARD,
    PlayerPosition.FORWARD: PositionCategory.FORWARD,
}


def category_of(position: Optional[PlayerPosition]) -> Optional[PositionCategory]:
    """Return the capacity category of a position, or None for ANY / unknown."""
    if position is None:
        return None
    return POSITION_CATEGORIES.get(position)


def same_category(a: Optional[PlayerPosition], b: Optional[PlayerPosition]) -> bool:
    """True if both positions share a category. Positions without one never match."""
    ca, cb = category_of(a), category_of(b)
    if ca is None or cb is None:
        return False
    return ca is cb


def positions_for_mode(mode: Optional[MatchMode]) -> tuple[PlayerPosition, ...]:
    """Ice positions for a mode in capacity order."""
    if mode is None:
        return DEFAULT_POSITIONS
    return MODE_POSITIONS[mode]


def capacity_for_mode(mode: Optional[MatchMode], slots_per_team: int) -> dict[PlayerPosition, int]:
    """Split one team's slots over the mode's positions.

    The goalie gets exactly one slot when the mode has one and any slot is
    available. The remaining slots go round-robin over the skater positions in
    declared order, so the result is deterministic and as even as possible.
    """
    positions = positions_for_mode(mode)
    capacity: dict[PlayerPosition, int] = {}
    if not positions or slots_per_team <= 0:
        return capacity

    remaining = slots_per_team
    if PlayerPosition.GOALIE in positions:
        capacity[PlayerPosition.GOALIE] = 1
        remaining -= 1

    skaters = [p for p in positions if p is not PlayerPosition.GOALIE]
    if remaining <= 0:
        return capacity
    if not skaters:
        # Leftover slots are not given to the goalie
        logger.warning(
            "Mode %s has no skater positions; %d slot(s) per team left undistributed",
            mode.name if mode else None,
            remaining,
        )
        return capacity

    idx = 0
    while remaining > 0:
        pos = skaters[idx % len(skaters)]
        capacity[pos] = capacity.get(pos, 0) + 1
        remaining -= 1
        idx += 1
    return capacity


def category_capacity(mode: Optional[MatchMode], slots_per_team: int) -> dict[PositionCategory, int]:
    """Fold per-position capacity into per-category slot counts for one team."""
    result: dict[PositionCategory, int] = {}
    for position, count in capacity_for_mode(mode, slots_per_team).items():
        category = POSITION_CATEGORIES[position]
        result[category] = result.get(category, 0) + count
    return result
