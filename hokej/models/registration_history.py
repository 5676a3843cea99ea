"""Append-only registration history."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from hokej.models.base import Base, utcnow
from hokej.models.player import PlayerPosition
from hokej.models.registration import ExcuseReason, PlayerMatchStatus, Team


class RegistrationHistoryEntry(Base):
    """Snapshot of a registration after one change. Rows are never updated or deleted.

    Ids are plain columns (no foreign keys) so history stays readable after the
    registration or match row is gone.
    """

    __tablename__ = "match_registration_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    match_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    player_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(16), nullable=False)  # create, update
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
    original_timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
