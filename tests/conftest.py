"""Pytest configuration and fixtures for engine tests."""
import os

# Set test env BEFORE any imports that use config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PROTECTED_USER_IDS"] = ""

from datetime import timedelta

import pytest

from hokej.models import Match, MatchMode, MatchStatus, Player, PlayerPosition
from hokej.models.base import async_session_factory, engine, init_db, utcnow
from hokej.schemas import RegistrationRequest
from hokej.services import Actor, RegistrationService


class RecordingNotifier:
    """Collects notifications instead of delivering them."""

    def __init__(self):
        self.sent = []

    async def notify(self, notification):
        self.sent.append(notification)

    def kinds_for(self, player_id):
        return [n.kind for n in self.sent if n.player_id == player_id]


@pytest.fixture
async def db():
    """Fresh in-memory schema per test; disposing the engine drops the database."""
    await init_db()
    yield async_session_factory
    await engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db, notifier):
    return RegistrationService(db, notifier=notifier)


@pytest.fixture
def make_match(db):
    async def _make(
        max_players=18,
        mode=MatchMode.FOUR_ON_FOUR_WITH_GOALIE,
        starts_in=timedelta(days=2),
        status=MatchStatus.SCHEDULED,
    ):
        async with db() as session:
            match = Match(starts_at=utcnow() + starts_in, mode=mode, max_players=max_players, status=status)
            session.add(match)
            await session.commit()
            return match.id

    return _make


@pytest.fixture
def make_player(db):
    async def _make(
        name="Player",
        position=PlayerPosition.ANY,
        can_switch_team=False,
        can_change_position=False,
        user_id=None,
    ):
        async with db() as session:
            player = Player(
                name=name,
                primary_position=position,
                can_switch_team=can_switch_team,
                can_change_position=can_change_position,
                user_id=user_id,
            )
            session.add(player)
            await session.commit()
            return player.id

    return _make


@pytest.fixture
def register(service):
    """Register a player as a player actor; returns the UpsertResult."""

    async def _register(match_id, player_id, team=None, actor=None, **fields):
        request = RegistrationRequest(team=team, **fields)
        return await service.upsert(match_id, player_id, request, actor or Actor.player())

    return _register
