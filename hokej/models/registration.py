"""Registration model - one player's response to one match."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hokej.models.base import Base, utcnow
from hokej.models.player import PlayerPosition


class Team(enum.Enum):
    DARK = "DARK"
    LIGHT = "LIGHT"

    def opposite(self) -> "Team":
        return Team.LIGHT if self is Team.DARK else Team.DARK


class PlayerMatchStatus(enum.Enum):
    """Registration state. A missing row is read as NO_RESPONSE."""

    NO_RESPONSE = "NO_RESPONSE"
    REGISTERED = "REGISTERED"
    RESERVED = "RESERVED"  # waitlisted
    UNREGISTERED = "UNREGISTERED"
    EXCUSED = "EXCUSED"
    SUBSTITUTE = "SUBSTITUTE"  # backup, not counted against capacity
    NO_EXCUSED = "NO_EXCUSED"  # no-show, set by an admin after the match


# Statuses that hold or wait for a place in the match
ACTIVE_STATUSES = frozenset(
    {PlayerMatchStatus.REGISTERED, PlayerMatchStatus.RESERVED, PlayerMatchStatus.SUBSTITUTE}
)


class ExcuseReason(enum.Enum):
    ILLNESS = "ILLNESS"
    WORK = "WORK"
    NOT_IN_MOOD = "NOT_IN_MOOD"
    OTHER = "OTHER"


class Registration(Base):
    """Current registration state of a player for a match. Every change is mirrored to history."""

    __tablename__ = "match_registrations"
    __table_args__ = (UniqueConstraint("match_id", "player_id", name="uq_registration_match_player"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id"), nullable=False, index=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False, index=True)
    status: Mapped[PlayerMatchStatus] = mapped_column(
        Enum(PlayerMatchStatus, native_enum=False, length=20), nullable=False
    )
    team: Mapped[Optional[Team]] = mapped_column(Enum(Team, native_enum=False, length=8), nullable=True)
    position_in_match: Mapped[Optional[PlayerPosition]] = mapped_column(
        Enum(PlayerPosition, native_enum=False, length=30), nullable=True
    )
    excuse_reason: Mapped[Optional[ExcuseReason]] = mapped_column(
        Enum(ExcuseReason, native_enum=False, length=20), nullable=True
    )
    excuse_note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    admin_note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    registered_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)  # FIFO key; moves on status change
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)  # actor name

    match: Mapped["Match"] = relationship("Match", back_populates="registrations")
    player: Mapped["Player"] = relationship("Player", back_populates="registrations")
