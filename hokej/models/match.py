"""Match model and match modes."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hokej.models.base import Base, utcnow


class MatchMode(enum.Enum):
    """On-ice format: (skaters per team, goalie included)."""

    THREE_ON_THREE_NO_GOALIE = (3, False)
    THREE_ON_THREE_WITH_GOALIE = (3, True)
    FOUR_ON_FOUR_NO_GOALIE = (4, False)
    FOUR_ON_FOUR_WITH_GOALIE = (4, True)
    FIVE_ON_FIVE_NO_GOALIE = (5, False)
    FIVE_ON_FIVE_WITH_GOALIE = (5, True)
    SIX_ON_SIX_NO_GOALIE = (6, False)

    def __init__(self, skaters_per_team: int, goalie_included: bool) -> None:
        self.skaters_per_team = skaters_per_team
        self.goalie_included = goalie_included

    @property
    def players_per_team(self) -> int:
        """Skaters rotate (two lines), the goalie does not."""
        return self.skaters_per_team * 2 + (1 if self.goalie_included else 0)

    @property
    def total_players(self) -> int:
        return self.players_per_team * 2


class MatchStatus(enum.Enum):
    SCHEDULED = "SCHEDULED"
    CANCELED = "CANCELED"


class Match(Base):
    """Single match with its mode and declared capacity (both teams)."""

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    location: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    mode: Mapped[Optional[MatchMode]] = mapped_column(
        Enum(MatchMode, native_enum=False, length=32), nullable=True
    )
    max_players: Mapped[int] = mapped_column(Integer, nullable=False)  # total for both teams
    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus, native_enum=False, length=16), default=MatchStatus.SCHEDULED, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    registrations = relationship(
        "Registration", back_populates="match", cascade="all, delete-orphan"
    )

    @property
    def slots_per_team(self) -> int:
        return max(0, self.max_players or 0) // 2
