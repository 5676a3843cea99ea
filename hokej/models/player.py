"""Player model and playing positions."""
from __future__ import annotations

import enum
from typing import Optional

from sqlalchemy import Boolean, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hokej.models.base import Base


class PositionCategory(enum.Enum):
    """Coarse grouping used for capacity: one slot class per category."""

    GOALIE = "GOALIE"
    DEFENSE = "DEFENSE"
    FORWARD = "FORWARD"


class PlayerPosition(enum.Enum):
    """Detailed ice position. ANY means the player does not mind."""

    GOALIE = "GOALIE"
    DEFENSE_LEFT = "DEFENSE_LEFT"
    DEFENSE_RIGHT = "DEFENSE_RIGHT"
    DEFENSE = "DEFENSE"
    CENTER = "CENTER"
    WING_LEFT = "WING_LEFT"
    WING_RIGHT = "WING_RIGHT"
    FORWARD = "FORWARD"
    ANY = "ANY"


class Player(Base):
    """Registered hockey player."""

    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    primary_position: Mapped[PlayerPosition] = mapped_column(
        Enum(PlayerPosition, native_enum=False, length=30), default=PlayerPosition.ANY, nullable=False
    )
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)  # owning app user
    can_switch_team: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # may be moved on promotion
    can_change_position: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # may swap defense/forward on promotion

    registrations = relationship(
        "Registration", back_populates="player", cascade="all, delete-orphan"
    )
