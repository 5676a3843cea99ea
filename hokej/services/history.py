"""Explicit, append-only registration history."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hokej.models import Registration, RegistrationHistoryEntry
from hokej.models.base import utcnow


async def append_history(session: AsyncSession, registration: Registration, action: str) -> RegistrationHistoryEntry:
    """Snapshot the registration into a new history row in the current transaction."""
    if registration.id is None:
        await session.flush()  # need the registration id
    entry = RegistrationHistoryEntry(
        registration_id=registration.id,
        match_id=registration.match_id,
        player_id=registration.player_id,
        action=action,
        status=registration.status,
        team=registration.team,
        position_in_match=registration.position_in_match,
        excuse_reason=registration.excuse_reason,
        excuse_note=registration.excuse_note,
        admin_note=registration.admin_note,
        reminder_sent=registration.reminder_sent,
        original_timestamp=registration.registered_at,
        changed_at=utcnow(),
        changed_by=registration.changed_by,
    )
    session.add(entry)
    await session.flush()
    return entry


async def history_for_registration(session: AsyncSession, registration_id: int) -> list[RegistrationHistoryEntry]:
    """All entries for a registration, oldest first."""
    result = await session.execute(
        select(RegistrationHistoryEntry)
        .where(RegistrationHistoryEntry.registration_id == registration_id)
        .order_by(RegistrationHistoryEntry.id)
    )
    return list(result.scalars().all())


async def history_for_player(session: AsyncSession, match_id: int, player_id: int) -> list[RegistrationHistoryEntry]:
    result = await session.execute(
        select(RegistrationHistoryEntry)
        .where(
            RegistrationHistoryEntry.match_id == match_id,
            RegistrationHistoryEntry.player_id == player_id,
        )
        .order_by(RegistrationHistoryEntry.id)
    )
    return list(result.scalars().all())
