"""Database models."""
from hokej.models.base import Base, init_db
from hokej.models.player import Player, PlayerPosition, PositionCategory
from hokej.models.match import Match, MatchMode, MatchStatus
from hokej.models.registration import (
    ACTIVE_STATUSES,
    ExcuseReason,
    PlayerMatchStatus,
    Registration,
    Team,
)
from hokej.models.registration_history import RegistrationHistoryEntry

__all__ = [
    "ACTIVE_STATUSES",
    "Base",
    "ExcuseReason",
    "Match",
    "MatchMode",
    "MatchStatus",
    "Player",
    "PlayerMatchStatus",
    "PlayerPosition",
    "PositionCategory",
    "Registration",
    "RegistrationHistoryEntry",
    "Team",
    "init_db",
]
