"""Pydantic request/response shapes for the registration engine."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from hokej.models import ExcuseReason, PlayerMatchStatus, PlayerPosition, Team


def _blank_to_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class RegistrationRequest(BaseModel):
    """Upsert of a player's registration.

    Target status: `unregister` wins, then an explicit `status`, then EXCUSED
    when an excuse reason is given, else REGISTERED.
    """

    status: Optional[PlayerMatchStatus] = None
    team: Optional[Team] = None
    position: Optional[PlayerPosition] = None
    excuse_reason: Optional[ExcuseReason] = None
    excuse_note: Optional[str] = None
    admin_note: Optional[str] = None
    unregister: bool = False
    switch_team: bool = False  # explicit request to move an active registration to `team`

    @field_validator("excuse_note", "admin_note", mode="before")
    @classmethod
    def strip_notes(cls, v):
        return _blank_to_none(v)

    def target_status(self) -> PlayerMatchStatus:
        if self.unregister:
            return PlayerMatchStatus.UNREGISTERED
        if self.status is not None:
            return self.status
        if self.excuse_reason is not None:
            return PlayerMatchStatus.EXCUSED
        return PlayerMatchStatus.REGISTERED


class RegistrationView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    match_id: int
    player_id: int
    status: PlayerMatchStatus
    team: Optional[Team] = None
    position_in_match: Optional[PlayerPosition] = None
    excuse_reason: Optional[ExcuseReason] = None
    excuse_note: Optional[str] = None
    admin_note: Optional[str] = None
    reminder_sent: bool = False
    registered_at: datetime
    updated_at: datetime
    changed_by: str


class HistoryEntryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    registration_id: int
    match_id: int
    player_id: int
    action: str
    status: PlayerMatchStatus
    team: Optional[Team] = None
    position_in_match: Optional[PlayerPosition] = None
    excuse_reason: Optional[ExcuseReason] = None
    excuse_note: Optional[str] = None
    admin_note: Optional[str] = None
    original_timestamp: datetime
    changed_at: datetime
    changed_by: str


class UpsertResult(BaseModel):
    """Outcome of one registration change.

    `outcome` is "granted" or "waitlisted" for register requests and None for
    other transitions. `promoted` is the waitlisted registration moved up into
    a slot this change freed.
    """

    registration: RegistrationView
    outcome: Optional[str] = None
    promoted: Optional[RegistrationView] = None

    @property
    def waitlisted(self) -> bool:
        return self.outcome == "waitlisted"


class PositionSlotView(BaseModel):
    position: PlayerPosition
    team: Team
    capacity: int
    occupied: int
    free: int


class PositionOverview(BaseModel):
    match_id: int
    mode: Optional[str] = None
    max_players: int
    slots: list[PositionSlotView] = []
