"""Registration state machine.

Every mutating call runs as one unit of work: write guard check, per-match
lock, one transaction covering the capacity decision, the registration change,
its history row and any waitlist promotion. Notifications are delivered only
after the transaction commits.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import config
from hokej.models import (
    ExcuseReason,
    Match,
    Player,
    PlayerMatchStatus,
    PlayerPosition,
    Registration,
    Team,
)
from hokej.models.base import async_session_factory, utcnow
from hokej.schemas import (
    HistoryEntryView,
    PositionOverview,
    RegistrationRequest,
    RegistrationView,
    UpsertResult,
)
from hokej.services.actor import SYSTEM_ACTOR, Actor
from hokej.services.capacity import CapacityGuard, SlotOutcome, effective_position, registered_for_match
from hokej.services.errors import (
    CapacityConflictError,
    InvalidInputError,
    InvalidStatusError,
    MatchNotFoundError,
    PlayerNotFoundError,
    RegistrationNotFoundError,
    StructuralRejectionError,
)
from hokej.services.history import append_history, history_for_player, history_for_registration
from hokej.services.layout import category_capacity, category_of
from hokej.services.locks import MatchLocks
from hokej.services.notifications import (
    LoggingNotifier,
    Notification,
    Notifier,
    dispatch,
    kind_for_status,
)
from hokej.services.waitlist import Vacancy, WaitlistPromoter
from hokej.services.write_guard import AllowAllWriteGuard, WriteGuard

logger = logging.getLogger("hokej.registrations")

_UNREGISTERABLE = (PlayerMatchStatus.REGISTERED, PlayerMatchStatus.RESERVED)
_POSITION_EDITABLE = (
    PlayerMatchStatus.REGISTERED,
    PlayerMatchStatus.RESERVED,
    PlayerMatchStatus.SUBSTITUTE,
)
_NOT_REQUESTABLE = (PlayerMatchStatus.NO_RESPONSE, PlayerMatchStatus.NO_EXCUSED)


def _view(registration: Optional[Registration]) -> Optional[RegistrationView]:
    if registration is None:
        return None
    return RegistrationView.model_validate(registration)


def _clear_excuse(registration: Registration) -> None:
    registration.excuse_reason = None
    registration.excuse_note = None


class RegistrationService:
    """Entry point for every registration change and query of one engine instance."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        *,
        notifier: Optional[Notifier] = None,
        write_guard: Optional[WriteGuard] = None,
        locks: Optional[MatchLocks] = None,
        guard: Optional[CapacityGuard] = None,
    ) -> None:
        self.session_factory = session_factory or async_session_factory
        self.notifier = notifier or LoggingNotifier()
        self.write_guard = write_guard or AllowAllWriteGuard()
        self.locks = locks or MatchLocks()
        self.guard = guard or CapacityGuard()
        self.promoter = WaitlistPromoter(self.guard)

    # --- unit of work ---

    @asynccontextmanager
    async def _unit_of_work(self, match_id: int, actor: Actor, operation: str):
        """Guard, lock and transaction for one change. Yields (session, outbox)."""
        self.write_guard.check(actor, operation)
        outbox: list[Notification] = []
        async with self.locks.hold(match_id):
            async with self.session_factory() as session:
                async with session.begin():
                    yield session, outbox
        await dispatch(self.notifier, outbox)

    async def _get_match(self, session: AsyncSession, match_id: int) -> Match:
        result = await session.execute(select(Match).where(Match.id == match_id).with_for_update())
        match = result.scalar_one_or_none()
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    async def _get_player(self, session: AsyncSession, player_id: int) -> Player:
        player = await session.get(Player, player_id)
        if player is None:
            raise PlayerNotFoundError(player_id)
        return player

    async def _find_registration(
        self, session: AsyncSession, match_id: int, player_id: int
    ) -> Optional[Registration]:
        result = await session.execute(
            select(Registration).where(
                Registration.match_id == match_id,
                Registration.player_id == player_id,
            )
        )
        return result.scalar_one_or_none()

    async def _get_registration(self, session: AsyncSession, match_id: int, player_id: int) -> Registration:
        registration = await self._find_registration(session, match_id, player_id)
        if registration is None:
            raise RegistrationNotFoundError(match_id, player_id)
        return registration

    def _assert_player_can_modify(self, match: Match, actor: Actor) -> None:
        if not actor.is_player:
            return
        limit = match.starts_at + timedelta(minutes=config.PLAYER_EDIT_WINDOW_MINUTES)
        if utcnow() >= limit:
            raise InvalidStatusError(
                f"Players can change their registration only until {config.PLAYER_EDIT_WINDOW_MINUTES} "
                "minutes after the match starts",
                match_id=match.id,
            )

    def _assert_match_not_started(self, match: Match, actor: Actor, what: str) -> None:
        if actor.is_player and match.starts_at <= utcnow():
            raise InvalidStatusError(
                f"{what} can be changed only before the match starts", match_id=match.id
            )

    def _queue(self, outbox: list[Notification], registration: Registration) -> None:
        kind = kind_for_status(registration.status)
        if kind is not None:
            outbox.append(Notification(registration.player_id, registration.match_id, kind, registration.id))

    async def _promote_into(
        self,
        session: AsyncSession,
        match: Match,
        vacancy: Vacancy,
        outbox: list[Notification],
        vacated_by: Optional[Registration] = None,
    ) -> Optional[Registration]:
        """Fill a vacancy from the waitlist. The registration that freed it is never its own candidate."""
        exclude_id = vacated_by.id if vacated_by is not None else None
        return await self.promoter.promote(
            session, match, vacancy, actor=SYSTEM_ACTOR, outbox=outbox, exclude_id=exclude_id
        )

    # --- upsert ---

    async def upsert(
        self,
        match_id: int,
        player_id: int,
        request: RegistrationRequest,
        actor: Actor,
    ) -> UpsertResult:
        """Apply a player's registration request and return the new state.

        Register requests end in REGISTERED (slot granted) or RESERVED
        (waitlisted). Leaving REGISTERED always succeeds and hands the freed
        slot to the waitlist. Every applied request, including a repeat of the
        current state, appends exactly one history entry.
        """
        target = request.target_status()
        if target in _NOT_REQUESTABLE:
            raise InvalidStatusError(
                f"Status {target.value} cannot be requested", match_id=match_id, player_id=player_id
            )
        if target is PlayerMatchStatus.EXCUSED and request.excuse_reason is None:
            raise InvalidInputError(
                "An excuse reason is required", match_id=match_id, player_id=player_id
            )

        async with self._unit_of_work(match_id, actor, "upsert") as (session, outbox):
            match = await self._get_match(session, match_id)
            player = await self._get_player(session, player_id)
            self._assert_player_can_modify(match, actor)

            registration = await self._find_registration(session, match_id, player_id)
            previous = registration.status if registration is not None else PlayerMatchStatus.NO_RESPONSE
            previous_team = registration.team if registration is not None else None
            previous_position = registration.position_in_match if registration is not None else None

            if target is PlayerMatchStatus.UNREGISTERED and previous not in _UNREGISTERABLE:
                raise RegistrationNotFoundError(match_id, player_id)

            outcome: Optional[SlotOutcome] = None
            team = previous_team
            position = previous_position or player.primary_position
            if target in (PlayerMatchStatus.REGISTERED, PlayerMatchStatus.RESERVED):
                team = request.team or previous_team
                position = effective_position(player, request.position, registration)
                outcome = await self._decide_slot(
                    session, match, player, registration, request, team, position, previous
                )
                new_status = (
                    PlayerMatchStatus.REGISTERED if outcome is SlotOutcome.GRANTED
                    else PlayerMatchStatus.RESERVED
                )
            else:
                new_status = target

            now = utcnow()
            action = "update"
            if registration is None:
                registration = Registration(
                    match_id=match_id,
                    player_id=player_id,
                    status=new_status,
                    reminder_sent=False,
                    created_at=now,
                    registered_at=now,
                    changed_by=actor.name,
                )
                session.add(registration)
                action = "create"

            if new_status in (PlayerMatchStatus.UNREGISTERED, PlayerMatchStatus.EXCUSED):
                registration.excuse_reason = request.excuse_reason
                registration.excuse_note = request.excuse_note
            else:
                _clear_excuse(registration)
            if request.admin_note is not None:
                registration.admin_note = request.admin_note
            registration.team = team
            registration.position_in_match = position

            if new_status is not previous:
                registration.registered_at = now
            registration.status = new_status
            registration.changed_by = actor.name
            registration.updated_at = now
            await append_history(session, registration, action)
            self._queue(outbox, registration)
            logger.info(
                "Registration %s: player %s match %s %s -> %s (%s)",
                registration.id, player_id, match_id, previous.value, new_status.value, actor.name,
            )

            promoted = None
            if previous is PlayerMatchStatus.REGISTERED and (
                new_status is not PlayerMatchStatus.REGISTERED
                or registration.team is not previous_team
                or category_of(registration.position_in_match) is not category_of(previous_position)
            ):
                promoted = await self._promote_into(
                    session, match, Vacancy(previous_team, previous_position), outbox, registration
                )

            return UpsertResult(
                registration=_view(registration),
                outcome=outcome.value if outcome is not None else None,
                promoted=_view(promoted),
            )

    async def _decide_slot(
        self,
        session: AsyncSession,
        match: Match,
        player: Player,
        registration: Optional[Registration],
        request: RegistrationRequest,
        team: Optional[Team],
        position: Optional[PlayerPosition],
        previous: PlayerMatchStatus,
    ) -> SlotOutcome:
        # Re-confirming the slot already held does not touch occupancy
        if (
            previous is PlayerMatchStatus.REGISTERED
            and team is registration.team
            and category_of(position) is category_of(registration.position_in_match)
        ):
            return SlotOutcome.GRANTED

        decision = await self.guard.try_reserve_slot(
            session,
            match,
            player,
            team,
            position=position,
            registration=registration,
            switch_team=request.switch_team,
        )
        if decision.outcome is SlotOutcome.REJECTED:
            raise StructuralRejectionError(decision.reason, match_id=match.id, player_id=player.id)
        return decision.outcome

    # --- administrative changes ---

    async def set_status(
        self,
        match_id: int,
        player_id: int,
        status: PlayerMatchStatus,
        actor: Actor,
        admin_note: Optional[str] = None,
    ) -> UpsertResult:
        """Force a status. Forcing REGISTERED checks only the match total, not positions.

        Moving a player out of REGISTERED hands the slot to the next waitlisted
        player; the forced registration itself is never promoted back.
        """
        if status is PlayerMatchStatus.NO_EXCUSED:
            raise InvalidStatusError(
                "NO_EXCUSED must be set through mark_no_excused", match_id=match_id, player_id=player_id
            )
        if status is PlayerMatchStatus.NO_RESPONSE:
            raise InvalidStatusError("NO_RESPONSE cannot be set", match_id=match_id, player_id=player_id)

        async with self._unit_of_work(match_id, actor, "set_status") as (session, outbox):
            match = await self._get_match(session, match_id)
            await self._get_player(session, player_id)
            registration = await self._get_registration(session, match_id, player_id)
            previous = registration.status

            if status is PlayerMatchStatus.REGISTERED and previous is not PlayerMatchStatus.REGISTERED:
                await self.guard.check_total_capacity(session, match, registration)

            now = utcnow()
            if status is not previous:
                registration.registered_at = now
            if status in _POSITION_EDITABLE:
                _clear_excuse(registration)
            registration.status = status
            if admin_note:
                registration.admin_note = admin_note
            registration.changed_by = actor.name
            registration.updated_at = now
            await append_history(session, registration, "update")
            self._queue(outbox, registration)
            logger.info(
                "Override: registration %s %s -> %s by %s",
                registration.id, previous.value, status.value, actor.name,
            )

            promoted = None
            if previous is PlayerMatchStatus.REGISTERED and status is not PlayerMatchStatus.REGISTERED:
                promoted = await self._promote_into(
                    session, match, Vacancy.of(registration), outbox, registration
                )
            return UpsertResult(registration=_view(registration), promoted=_view(promoted))

    async def mark_no_excused(
        self,
        match_id: int,
        player_id: int,
        actor: Actor,
        admin_note: Optional[str] = None,
    ) -> RegistrationView:
        """Mark a registered player who did not show up. Only after the match started."""
        async with self._unit_of_work(match_id, actor, "mark_no_excused") as (session, outbox):
            match = await self._get_match(session, match_id)
            await self._get_player(session, player_id)
            if match.starts_at > utcnow():
                raise InvalidStatusError(
                    "NO_EXCUSED can be set only for a match that already took place",
                    match_id=match_id,
                    player_id=player_id,
                )
            registration = await self._get_registration(session, match_id, player_id)
            if registration.status is not PlayerMatchStatus.REGISTERED:
                raise InvalidStatusError(
                    "NO_EXCUSED can be set only for a REGISTERED player",
                    match_id=match_id,
                    player_id=player_id,
                )

            now = utcnow()
            _clear_excuse(registration)
            registration.admin_note = (admin_note or "").strip() or config.DEFAULT_NO_EXCUSED_NOTE
            registration.status = PlayerMatchStatus.NO_EXCUSED
            registration.registered_at = now
            registration.changed_by = actor.name
            registration.updated_at = now
            await append_history(session, registration, "update")
            self._queue(outbox, registration)
            return _view(registration)

    async def cancel_no_excused(
        self,
        match_id: int,
        player_id: int,
        actor: Actor,
        excuse_reason: Optional[ExcuseReason] = None,
        excuse_note: Optional[str] = None,
    ) -> RegistrationView:
        """Turn a NO_EXCUSED back into EXCUSED after the fact."""
        async with self._unit_of_work(match_id, actor, "cancel_no_excused") as (session, outbox):
            match = await self._get_match(session, match_id)
            await self._get_player(session, player_id)
            if match.starts_at > utcnow():
                raise InvalidStatusError(
                    "NO_EXCUSED can be cancelled only for a match that already took place",
                    match_id=match_id,
                    player_id=player_id,
                )
            registration = await self._get_registration(session, match_id, player_id)
            if registration.status is not PlayerMatchStatus.NO_EXCUSED:
                raise InvalidStatusError(
                    "Only a NO_EXCUSED registration can be cancelled",
                    match_id=match_id,
                    player_id=player_id,
                )

            now = utcnow()
            registration.excuse_reason = excuse_reason or ExcuseReason.OTHER
            registration.excuse_note = (excuse_note or "").strip() or config.DEFAULT_CANCEL_NO_EXCUSED_NOTE
            registration.admin_note = None
            registration.status = PlayerMatchStatus.EXCUSED
            registration.registered_at = now
            registration.changed_by = actor.name
            registration.updated_at = now
            await append_history(session, registration, "update")
            self._queue(outbox, registration)
            return _view(registration)

    async def change_team(self, match_id: int, player_id: int, actor: Actor) -> UpsertResult:
        """Move a REGISTERED player to the other team if it has a free slot."""
        async with self._unit_of_work(match_id, actor, "change_team") as (session, outbox):
            match = await self._get_match(session, match_id)
            player = await self._get_player(session, player_id)
            self._assert_match_not_started(match, actor, "Team")
            registration = await self._get_registration(session, match_id, player_id)
            if registration.status is not PlayerMatchStatus.REGISTERED:
                raise InvalidStatusError(
                    "Team can be changed only for a REGISTERED player", match_id=match_id, player_id=player_id
                )
            if registration.team is None:
                raise InvalidInputError("Registration has no team", match_id=match_id, player_id=player_id)

            vacancy = Vacancy.of(registration)
            new_team = registration.team.opposite()
            decision = await self.guard.try_reserve_slot(
                session, match, player, new_team, registration=registration, switch_team=True
            )
            if not decision.granted:
                raise CapacityConflictError(
                    f"No free slot on team {new_team.value}: {decision.reason}",
                    match_id=match_id,
                    player_id=player_id,
                )

            registration.team = new_team
            registration.changed_by = actor.name
            registration.updated_at = utcnow()
            await append_history(session, registration, "update")
            self._queue(outbox, registration)
            promoted = await self._promote_into(session, match, vacancy, outbox, registration)
            return UpsertResult(
                registration=_view(registration),
                outcome=SlotOutcome.GRANTED.value,
                promoted=_view(promoted),
            )

    async def change_position(
        self,
        match_id: int,
        player_id: int,
        position: PlayerPosition,
        actor: Actor,
    ) -> UpsertResult:
        """Change the position played in this match. A REGISTERED player must fit the new category."""
        async with self._unit_of_work(match_id, actor, "change_position") as (session, outbox):
            match = await self._get_match(session, match_id)
            player = await self._get_player(session, player_id)
            self._assert_match_not_started(match, actor, "Position")
            registration = await self._get_registration(session, match_id, player_id)
            if registration.status not in _POSITION_EDITABLE:
                raise InvalidStatusError(
                    "Position can be changed only for REGISTERED, RESERVED or SUBSTITUTE registrations",
                    match_id=match_id,
                    player_id=player_id,
                )

            vacancy = Vacancy.of(registration)
            registered = registration.status is PlayerMatchStatus.REGISTERED
            category_changed = category_of(position) is not category_of(registration.position_in_match)
            if registered and category_changed:
                decision = await self.guard.try_reserve_slot(
                    session, match, player, registration.team, position=position, registration=registration
                )
                if not decision.granted:
                    raise CapacityConflictError(
                        f"No free {position.value} slot: {decision.reason}",
                        match_id=match_id,
                        player_id=player_id,
                    )

            registration.position_in_match = position
            registration.changed_by = actor.name
            registration.updated_at = utcnow()
            await append_history(session, registration, "update")

            promoted = None
            if registered and category_changed:
                promoted = await self._promote_into(session, match, vacancy, outbox, registration)
            return UpsertResult(registration=_view(registration), promoted=_view(promoted))

    async def handle_capacity_change(
        self, match_id: int, new_max_players: int, actor: Actor
    ) -> list[RegistrationView]:
        """Apply a new match capacity and return the registrations whose status changed.

        Lowering capacity moves the most recently registered players beyond the
        new limits to RESERVED. Raising it promotes at most one waitlisted
        player per new slot.
        """
        if new_max_players < 0:
            raise InvalidInputError("max_players must not be negative", match_id=match_id)

        async with self._unit_of_work(match_id, actor, "capacity_change") as (session, outbox):
            match = await self._get_match(session, match_id)
            old_max_players = match.max_players
            match.max_players = new_max_players
            await session.flush()
            logger.info("Match %s capacity %s -> %s", match_id, old_max_players, new_max_players)

            changed: list[Registration] = []
            if new_max_players < old_max_players:
                changed = await self._demote_overflow(session, match, outbox)
            elif new_max_players > old_max_players:
                for _ in range(new_max_players - old_max_players):
                    promoted = await self._promote_into(session, match, Vacancy(), outbox)
                    if promoted is None:
                        break
                    changed.append(promoted)
            return [_view(r) for r in changed]

    async def _demote_overflow(
        self, session: AsyncSession, match: Match, outbox: list[Notification]
    ) -> list[Registration]:
        """Keep the earliest registered players that fit; the rest go to the waitlist."""
        registered = sorted(
            await registered_for_match(session, match.id),
            key=lambda r: (r.registered_at, r.id),
        )
        per_team = category_capacity(match.mode, match.slots_per_team)
        kept = 0
        used: dict[tuple, int] = {}
        demoted = []
        for registration in registered:
            category = category_of(registration.position_in_match)
            fits = kept < match.max_players
            if fits and category is not None and registration.team is not None:
                key = (registration.team, category)
                fits = used.get(key, 0) < per_team.get(category, 0)
                if fits:
                    used[key] = used.get(key, 0) + 1
            if fits:
                kept += 1
                continue
            registration.status = PlayerMatchStatus.RESERVED
            registration.changed_by = SYSTEM_ACTOR.name
            registration.updated_at = utcnow()
            await append_history(session, registration, "update")
            self._queue(outbox, registration)
            demoted.append(registration)
        if demoted:
            logger.info("Match %s: %d player(s) moved to the waitlist", match.id, len(demoted))
        return demoted

    # --- queries ---

    async def get_registration(self, match_id: int, player_id: int) -> Optional[RegistrationView]:
        async with self.session_factory() as session:
            return _view(await self._find_registration(session, match_id, player_id))

    async def registrations_for_match(
        self, match_id: int, status: Optional[PlayerMatchStatus] = None
    ) -> list[RegistrationView]:
        """Registrations of a match in registration order, optionally of one status."""
        async with self.session_factory() as session:
            query = select(Registration).where(Registration.match_id == match_id)
            if status is not None:
                query = query.where(Registration.status == status)
            result = await session.execute(query.order_by(Registration.registered_at, Registration.id))
            return [_view(r) for r in result.scalars().all()]

    async def registration_history(self, registration_id: int) -> list[HistoryEntryView]:
        async with self.session_factory() as session:
            entries = await history_for_registration(session, registration_id)
            return [HistoryEntryView.model_validate(e) for e in entries]

    async def player_history(self, match_id: int, player_id: int) -> list[HistoryEntryView]:
        async with self.session_factory() as session:
            entries = await history_for_player(session, match_id, player_id)
            return [HistoryEntryView.model_validate(e) for e in entries]

    async def position_overview(self, match_id: int, team: Optional[Team] = None) -> PositionOverview:
        async with self.session_factory() as session:
            match = await session.get(Match, match_id)
            if match is None:
                raise MatchNotFoundError(match_id)
            return await self.guard.position_overview(session, match, team)
