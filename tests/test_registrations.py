"""Tests for the registration state machine, waitlist promotion and admin flows."""
import asyncio
from datetime import timedelta

import pytest

import config
from hokej.models import ExcuseReason, MatchMode, PlayerMatchStatus, PlayerPosition, Team
from hokej.schemas import RegistrationRequest
from hokej.services import Actor, NotificationKind, ProtectedAccountGuard, RegistrationService
from hokej.services.errors import (
    CapacityConflictError,
    InvalidInputError,
    InvalidStatusError,
    MatchNotFoundError,
    RegistrationNotFoundError,
    StructuralRejectionError,
    WriteBlockedError,
)

ADMIN = Actor.admin()


async def _fill(make_player, register, match_id, team, position, count):
    ids = []
    for i in range(count):
        pid = await make_player(f"{position.value} {i}", position)
        result = await register(match_id, pid, team)
        assert result.outcome == "granted"
        ids.append(pid)
    return ids


@pytest.mark.asyncio
async def test_register_granted(service, notifier, make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player("Forward", PlayerPosition.WING_LEFT)

    result = await register(match_id, pid, Team.DARK)

    assert result.outcome == "granted"
    assert result.registration.status is PlayerMatchStatus.REGISTERED
    assert result.registration.team is Team.DARK
    assert result.registration.position_in_match is PlayerPosition.WING_LEFT
    assert result.registration.changed_by == "user"
    history = await service.player_history(match_id, pid)
    assert [h.action for h in history] == ["create"]
    assert notifier.kinds_for(pid) == [NotificationKind.REGISTERED]


@pytest.mark.asyncio
async def test_full_match_waitlists(service, notifier, make_match, make_player, register):
    match_id = await make_match(max_players=2, mode=None)
    players = [await make_player(f"P{i}") for i in range(3)]

    outcomes = [(await register(match_id, pid)).outcome for pid in players]

    assert outcomes == ["granted", "granted", "waitlisted"]
    reg = await service.get_registration(match_id, players[2])
    assert reg.status is PlayerMatchStatus.RESERVED
    assert notifier.kinds_for(players[2]) == [NotificationKind.RESERVED]


@pytest.mark.asyncio
async def test_full_category_waitlists(make_match, make_player, register):
    match_id = await make_match()
    await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.GOALIE, 1)
    second_goalie = await make_player("Goalie 2", PlayerPosition.GOALIE)

    dark = await register(match_id, second_goalie, Team.DARK)
    assert dark.waitlisted

    other = await make_player("Goalie 3", PlayerPosition.GOALIE)
    light = await register(match_id, other, Team.LIGHT)
    assert light.outcome == "granted"


@pytest.mark.asyncio
async def test_goalie_in_mode_without_goalie_is_waitlisted(make_match, make_player, register):
    match_id = await make_match(mode=MatchMode.FOUR_ON_FOUR_NO_GOALIE, max_players=16)
    goalie = await make_player("Goalie", PlayerPosition.GOALIE)

    assert (await register(match_id, goalie, Team.DARK)).waitlisted
    as_skater = await register(match_id, goalie, Team.DARK, position=PlayerPosition.DEFENSE_LEFT)
    assert as_skater.outcome == "granted"
    assert as_skater.registration.position_in_match is PlayerPosition.DEFENSE_LEFT


@pytest.mark.asyncio
async def test_substitute_does_not_use_capacity(service, make_match, make_player, register):
    match_id = await make_match(max_players=1, mode=None)
    sub = await make_player("Sub")
    pid = await make_player("Player")

    result = await register(match_id, sub, status=PlayerMatchStatus.SUBSTITUTE)
    assert result.outcome is None
    assert result.registration.status is PlayerMatchStatus.SUBSTITUTE
    assert (await register(match_id, pid)).outcome == "granted"


@pytest.mark.asyncio
async def test_unregister_promotes_same_category_first(service, notifier, make_match, make_player, register):
    """A freed goalie slot goes to the waitlisted goalie, not the older forward."""
    match_id = await make_match()
    goalie = (await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.GOALIE, 1))[0]
    await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.WING_LEFT, 4)
    forward = await make_player("Late forward", PlayerPosition.CENTER)
    waiting_goalie = await make_player("Late goalie", PlayerPosition.GOALIE)
    assert (await register(match_id, forward, Team.DARK)).waitlisted
    assert (await register(match_id, waiting_goalie, Team.DARK)).waitlisted

    result = await register(match_id, goalie, unregister=True, excuse_reason=ExcuseReason.WORK)

    assert result.registration.status is PlayerMatchStatus.UNREGISTERED
    assert result.registration.excuse_reason is ExcuseReason.WORK
    assert result.promoted is not None
    assert result.promoted.player_id == waiting_goalie
    assert result.promoted.status is PlayerMatchStatus.REGISTERED
    assert (await service.get_registration(match_id, forward)).status is PlayerMatchStatus.RESERVED

    history = await service.player_history(match_id, waiting_goalie)
    assert len(history) == 2
    assert history[-1].changed_by == "system"
    assert history[-1].status is PlayerMatchStatus.REGISTERED
    assert NotificationKind.PROMOTED in notifier.kinds_for(waiting_goalie)


@pytest.mark.asyncio
async def test_promotion_is_fifo_within_category(service, make_match, make_player, register):
    match_id = await make_match()
    forwards = await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.WING_RIGHT, 4)
    first = await make_player("First", PlayerPosition.WING_LEFT)
    second = await make_player("Second", PlayerPosition.CENTER)
    await register(match_id, first, Team.DARK)
    await register(match_id, second, Team.DARK)

    result = await register(match_id, forwards[0], status=PlayerMatchStatus.EXCUSED, excuse_reason=ExcuseReason.ILLNESS)

    assert result.promoted.player_id == first
    assert (await service.get_registration(match_id, second)).status is PlayerMatchStatus.RESERVED


@pytest.mark.asyncio
async def test_promotion_respects_team_unless_player_may_switch(service, make_match, make_player, register):
    match_id = await make_match()
    dark_goalie = (await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.GOALIE, 1))[0]
    await _fill(make_player, register, match_id, Team.LIGHT, PlayerPosition.GOALIE, 1)
    stays = await make_player("Light only", PlayerPosition.GOALIE)
    flexible = await make_player("Flexible", PlayerPosition.GOALIE, can_switch_team=True)
    await register(match_id, stays, Team.LIGHT)
    await register(match_id, flexible, Team.LIGHT)

    result = await register(match_id, dark_goalie, unregister=True)

    assert result.promoted.player_id == flexible
    assert result.promoted.team is Team.DARK
    assert (await service.get_registration(match_id, stays)).status is PlayerMatchStatus.RESERVED


@pytest.mark.asyncio
async def test_promotion_moves_skater_across_categories_only_when_allowed(
    service, make_match, make_player, register
):
    match_id = await make_match()
    await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.DEFENSE_LEFT, 4)
    forwards = await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.WING_LEFT, 4)
    defender = await make_player("Defense only", PlayerPosition.DEFENSE_LEFT)
    flexible = await make_player("Anywhere", PlayerPosition.DEFENSE_RIGHT, can_change_position=True)
    assert (await register(match_id, defender, Team.DARK)).waitlisted
    assert (await register(match_id, flexible, Team.DARK)).waitlisted

    result = await register(match_id, forwards[0], unregister=True)

    assert result.promoted.player_id == flexible
    assert result.promoted.position_in_match is PlayerPosition.WING_LEFT
    assert (await service.get_registration(match_id, defender)).status is PlayerMatchStatus.RESERVED


@pytest.mark.asyncio
async def test_switch_to_full_team_stays_waitlisted(service, make_match, make_player, register):
    """The registration that frees a slot is never promoted back into it."""
    match_id = await make_match()
    await _fill(make_player, register, match_id, Team.LIGHT, PlayerPosition.GOALIE, 1)
    goalie = await make_player("Mover", PlayerPosition.GOALIE, can_switch_team=True)
    await register(match_id, goalie, Team.DARK)

    result = await register(match_id, goalie, Team.LIGHT, switch_team=True)

    assert result.waitlisted
    assert result.promoted is None
    reg = await service.get_registration(match_id, goalie)
    assert (reg.status, reg.team) == (PlayerMatchStatus.RESERVED, Team.LIGHT)
    history = await service.player_history(match_id, goalie)
    assert [(h.status, h.team) for h in history] == [
        (PlayerMatchStatus.REGISTERED, Team.DARK),
        (PlayerMatchStatus.RESERVED, Team.LIGHT),
    ]


@pytest.mark.asyncio
async def test_history_entry_per_upsert(service, make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player("Player", PlayerPosition.DEFENSE_LEFT)

    first = await register(match_id, pid, Team.LIGHT)
    again = await register(match_id, pid, Team.LIGHT)
    await register(match_id, pid, excuse_reason=ExcuseReason.NOT_IN_MOOD, excuse_note="  ")
    back = await register(match_id, pid, Team.LIGHT)

    history = await service.player_history(match_id, pid)
    assert len(history) == 4
    assert [h.action for h in history] == ["create", "update", "update", "update"]
    assert history[2].status is PlayerMatchStatus.EXCUSED
    assert history[2].excuse_note is None
    assert again.registration.registered_at == first.registration.registered_at
    assert back.registration.excuse_reason is None
    entries = await service.registration_history(first.registration.id)
    assert [e.id for e in entries] == [h.id for h in history]


@pytest.mark.asyncio
async def test_unregister_without_registration(service, make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player()

    with pytest.raises(RegistrationNotFoundError):
        await register(match_id, pid, unregister=True)
    assert await service.get_registration(match_id, pid) is None


@pytest.mark.asyncio
async def test_excuse_requires_reason(service, make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player()

    with pytest.raises(InvalidInputError):
        await register(match_id, pid, status=PlayerMatchStatus.EXCUSED)
    assert await service.player_history(match_id, pid) == []


@pytest.mark.asyncio
async def test_unknown_match(make_player, register):
    pid = await make_player()
    with pytest.raises(MatchNotFoundError):
        await register(12345, pid)


@pytest.mark.asyncio
async def test_no_response_cannot_be_requested(make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player()
    with pytest.raises(InvalidStatusError):
        await register(match_id, pid, status=PlayerMatchStatus.NO_RESPONSE)


@pytest.mark.asyncio
async def test_team_switch_needs_explicit_flag(service, make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player("Player", PlayerPosition.CENTER)
    await register(match_id, pid, Team.DARK)

    with pytest.raises(StructuralRejectionError):
        await register(match_id, pid, Team.LIGHT)
    assert len(await service.player_history(match_id, pid)) == 1

    switched = await register(match_id, pid, Team.LIGHT, switch_team=True)
    assert switched.outcome == "granted"
    assert switched.registration.team is Team.LIGHT


@pytest.mark.asyncio
async def test_write_guard_blocks_before_any_change(db, notifier, make_match, make_player):
    service = RegistrationService(db, notifier=notifier, write_guard=ProtectedAccountGuard({99}))
    match_id = await make_match()
    pid = await make_player()

    with pytest.raises(WriteBlockedError) as exc:
        await service.upsert(match_id, pid, RegistrationRequest(), Actor.player(user_id=99))
    assert isinstance(exc.value, StructuralRejectionError)
    assert await service.get_registration(match_id, pid) is None
    assert notifier.sent == []

    result = await service.upsert(match_id, pid, RegistrationRequest(), Actor.player(user_id=5))
    assert result.outcome == "granted"


@pytest.mark.asyncio
async def test_player_edit_window(service, make_match, make_player, register):
    match_id = await make_match(starts_in=-timedelta(minutes=config.PLAYER_EDIT_WINDOW_MINUTES + 10))
    pid = await make_player()

    with pytest.raises(InvalidStatusError):
        await register(match_id, pid)
    result = await register(match_id, pid, actor=ADMIN)
    assert result.registration.changed_by == "admin"


@pytest.mark.asyncio
async def test_concurrent_last_slot(service, make_match, make_player):
    match_id = await make_match(max_players=1, mode=None)
    a = await make_player("A")
    b = await make_player("B")

    results = await asyncio.gather(
        service.upsert(match_id, a, RegistrationRequest(), Actor.player()),
        service.upsert(match_id, b, RegistrationRequest(), Actor.player()),
    )

    assert sorted(r.outcome for r in results) == ["granted", "waitlisted"]
    registered = await service.registrations_for_match(match_id, PlayerMatchStatus.REGISTERED)
    assert len(registered) == 1


@pytest.mark.asyncio
async def test_concurrent_last_goalie_slot(service, make_match, make_player):
    match_id = await make_match()
    first = await make_player("Goalie A", PlayerPosition.GOALIE)
    second = await make_player("Goalie B", PlayerPosition.GOALIE)

    results = await asyncio.gather(
        service.upsert(match_id, first, RegistrationRequest(team=Team.DARK), Actor.player()),
        service.upsert(match_id, second, RegistrationRequest(team=Team.DARK), Actor.player()),
    )

    assert sorted(r.outcome for r in results) == ["granted", "waitlisted"]
    overview = await service.position_overview(match_id, Team.DARK)
    goalie = next(s for s in overview.slots if s.position is PlayerPosition.GOALIE)
    assert goalie.occupied == 1


@pytest.mark.asyncio
async def test_failing_notifier_does_not_roll_back(db, make_match, make_player):
    class BrokenNotifier:
        async def notify(self, notification):
            raise RuntimeError("smtp down")

    service = RegistrationService(db, notifier=BrokenNotifier())
    match_id = await make_match()
    pid = await make_player()

    result = await service.upsert(match_id, pid, RegistrationRequest(), Actor.player())

    assert result.outcome == "granted"
    assert (await service.get_registration(match_id, pid)).status is PlayerMatchStatus.REGISTERED


# --- admin operations ---


@pytest.mark.asyncio
async def test_set_status_checks_total_capacity(service, make_match, make_player, register):
    match_id = await make_match(max_players=1, mode=None)
    a = await make_player("A")
    b = await make_player("B")
    await register(match_id, a)
    await register(match_id, b)

    with pytest.raises(CapacityConflictError):
        await service.set_status(match_id, b, PlayerMatchStatus.REGISTERED, ADMIN)
    with pytest.raises(InvalidStatusError):
        await service.set_status(match_id, b, PlayerMatchStatus.NO_EXCUSED, ADMIN)

    result = await service.set_status(match_id, a, PlayerMatchStatus.SUBSTITUTE, ADMIN, admin_note="Backup")
    assert result.registration.status is PlayerMatchStatus.SUBSTITUTE
    assert result.registration.admin_note == "Backup"
    assert result.promoted.player_id == b


@pytest.mark.asyncio
async def test_set_status_reserved_is_not_undone(service, notifier, make_match, make_player, register):
    match_id = await make_match(max_players=2, mode=None)
    pid = await make_player()
    await register(match_id, pid)

    result = await service.set_status(match_id, pid, PlayerMatchStatus.RESERVED, ADMIN)

    assert result.promoted is None
    reg = await service.get_registration(match_id, pid)
    assert reg.status is PlayerMatchStatus.RESERVED
    assert reg.changed_by == "admin"
    assert notifier.kinds_for(pid) == [NotificationKind.REGISTERED, NotificationKind.RESERVED]


@pytest.mark.asyncio
async def test_set_status_reserved_promotes_next_in_line(service, make_match, make_player, register):
    match_id = await make_match(max_players=1, mode=None)
    demoted = await make_player("Demoted")
    waiting = await make_player("Waiting")
    await register(match_id, demoted)
    await register(match_id, waiting)

    result = await service.set_status(match_id, demoted, PlayerMatchStatus.RESERVED, ADMIN)

    assert result.promoted.player_id == waiting
    assert (await service.get_registration(match_id, demoted)).status is PlayerMatchStatus.RESERVED


@pytest.mark.asyncio
async def test_no_excused_flow(service, notifier, make_match, make_player, register):
    match_id = await make_match(starts_in=-timedelta(hours=1))
    pid = await make_player()
    await register(match_id, pid, actor=ADMIN)

    marked = await service.mark_no_excused(match_id, pid, ADMIN)
    assert marked.status is PlayerMatchStatus.NO_EXCUSED
    assert marked.admin_note == config.DEFAULT_NO_EXCUSED_NOTE
    assert NotificationKind.NO_EXCUSED in notifier.kinds_for(pid)

    cancelled = await service.cancel_no_excused(match_id, pid, ADMIN)
    assert cancelled.status is PlayerMatchStatus.EXCUSED
    assert cancelled.excuse_reason is ExcuseReason.OTHER
    assert cancelled.excuse_note == config.DEFAULT_CANCEL_NO_EXCUSED_NOTE
    assert cancelled.admin_note is None

    with pytest.raises(InvalidStatusError):
        await service.cancel_no_excused(match_id, pid, ADMIN)
    assert len(await service.player_history(match_id, pid)) == 3


@pytest.mark.asyncio
async def test_no_excused_only_after_match_start(service, make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player()
    await register(match_id, pid)

    with pytest.raises(InvalidStatusError):
        await service.mark_no_excused(match_id, pid, ADMIN)


@pytest.mark.asyncio
async def test_change_team(service, make_match, make_player, register):
    match_id = await make_match()
    pid = await make_player("Mover", PlayerPosition.WING_LEFT)
    await register(match_id, pid, Team.DARK)

    moved = await service.change_team(match_id, pid, Actor.player())
    assert moved.registration.team is Team.DARK.opposite()

    await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.CENTER, 4)
    with pytest.raises(CapacityConflictError):
        await service.change_team(match_id, pid, Actor.player())
    assert (await service.get_registration(match_id, pid)).team is Team.LIGHT


@pytest.mark.asyncio
async def test_change_position(service, make_match, make_player, register):
    match_id = await make_match()
    await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.GOALIE, 1)
    pid = await make_player("Skater", PlayerPosition.WING_LEFT)
    await register(match_id, pid, Team.DARK)

    changed = await service.change_position(match_id, pid, PlayerPosition.DEFENSE_RIGHT, ADMIN)
    assert changed.registration.position_in_match is PlayerPosition.DEFENSE_RIGHT

    with pytest.raises(CapacityConflictError):
        await service.change_position(match_id, pid, PlayerPosition.GOALIE, ADMIN)
    reg = await service.get_registration(match_id, pid)
    assert reg.position_in_match is PlayerPosition.DEFENSE_RIGHT


@pytest.mark.asyncio
async def test_capacity_change(service, notifier, make_match, make_player, register):
    match_id = await make_match(max_players=2, mode=None)
    p1, p2, p3 = [await make_player(f"P{i}") for i in range(3)]
    for pid in (p1, p2, p3):
        await register(match_id, pid)

    demoted = await service.handle_capacity_change(match_id, 1, ADMIN)
    assert [r.player_id for r in demoted] == [p2]
    assert (await service.get_registration(match_id, p1)).status is PlayerMatchStatus.REGISTERED
    assert NotificationKind.RESERVED in notifier.kinds_for(p2)

    promoted = await service.handle_capacity_change(match_id, 3, ADMIN)
    assert [r.player_id for r in promoted] == [p2, p3]
    registered = await service.registrations_for_match(match_id, PlayerMatchStatus.REGISTERED)
    assert len(registered) == 3


@pytest.mark.asyncio
async def test_position_overview(service, make_match, make_player, register):
    match_id = await make_match()
    await _fill(make_player, register, match_id, Team.DARK, PlayerPosition.GOALIE, 1)

    overview = await service.position_overview(match_id, Team.DARK)

    goalie = next(s for s in overview.slots if s.position is PlayerPosition.GOALIE)
    assert (goalie.capacity, goalie.occupied, goalie.free) == (1, 1, 0)
    assert sum(s.capacity for s in overview.slots) == 9
    assert overview.mode == "FOUR_ON_FOUR_WITH_GOALIE"
