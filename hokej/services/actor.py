"""Explicit actor passed to every engine call."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class ActorRole(enum.Enum):
    PLAYER = "player"
    MANAGER = "manager"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Who performs a change. `name` is what history records."""

    name: str
    role: ActorRole
    user_id: Optional[int] = None

    @property
    def is_player(self) -> bool:
        return self.role is ActorRole.PLAYER

    @classmethod
    def player(cls, user_id: Optional[int] = None) -> "Actor":
        return cls("user", ActorRole.PLAYER, user_id)

    @classmethod
    def admin(cls, user_id: Optional[int] = None) -> "Actor":
        return cls("admin", ActorRole.ADMIN, user_id)

    @classmethod
    def manager(cls, user_id: Optional[int] = None) -> "Actor":
        return cls("manager", ActorRole.MANAGER, user_id)


SYSTEM_ACTOR = Actor("system", ActorRole.SYSTEM)
