"""Registration engine errors.

Every error aborts the unit of work it is raised in: the registration row and
its history are left exactly as they were before the call.
"""
from __future__ import annotations

from typing import Optional


class RegistrationError(Exception):
    """Base class for all engine errors."""

    def __init__(
        self,
        message: str,
        *,
        match_id: Optional[int] = None,
        player_id: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.match_id = match_id
        self.player_id = player_id


# --- Not found ---


class NotFoundError(RegistrationError):
    pass


class MatchNotFoundError(NotFoundError):
    def __init__(self, match_id: int) -> None:
        super().__init__(f"Match {match_id} not found", match_id=match_id)


class PlayerNotFoundError(NotFoundError):
    def __init__(self, player_id: int) -> None:
        super().__init__(f"Player {player_id} not found", player_id=player_id)


class RegistrationNotFoundError(NotFoundError):
    def __init__(self, match_id: int, player_id: int) -> None:
        super().__init__(
            f"No active registration of player {player_id} for match {match_id}",
            match_id=match_id,
            player_id=player_id,
        )


# --- Conflict ---


class ConflictError(RegistrationError):
    pass


class CapacityConflictError(ConflictError):
    """Forced change would exceed match capacity."""


# --- Invalid input ---


class InvalidInputError(RegistrationError):
    pass


class InvalidStatusError(InvalidInputError):
    """Transition not allowed from the current status or at this time."""


# --- Structural rejection ---


class StructuralRejectionError(RegistrationError):
    pass


class WriteBlockedError(StructuralRejectionError):
    """Write vetoed by the write guard (e.g. a protected demo account)."""

    def __init__(self, operation: str, actor_name: str) -> None:
        super().__init__(f"Operation '{operation}' is not allowed for {actor_name}")
        self.operation = operation
        self.actor_name = actor_name
