"""Write guard boundary: lets an outside policy veto mutating calls."""
from __future__ import annotations

import logging
from typing import Iterable, Protocol

import config
from hokej.services.actor import Actor
from hokej.services.errors import WriteBlockedError

logger = logging.getLogger("hokej.write_guard")


class WriteGuard(Protocol):
    def check(self, actor: Actor, operation: str) -> None:
        """Raise WriteBlockedError to veto the operation."""
        ...


class AllowAllWriteGuard:
    def check(self, actor: Actor, operation: str) -> None:
        return None


class ProtectedAccountGuard:
    """Block writes from protected (demo) user accounts."""

    def __init__(self, protected_user_ids: Iterable[int] | None = None) -> None:
        ids = config.PROTECTED_USER_IDS if protected_user_ids is None else protected_user_ids
        self.protected_user_ids = frozenset(ids)

    def check(self, actor: Actor, operation: str) -> None:
        if actor.user_id is not None and actor.user_id in self.protected_user_ids:
            logger.info("Write blocked: %s by protected user %s", operation, actor.user_id)
            raise WriteBlockedError(operation, actor.name)
