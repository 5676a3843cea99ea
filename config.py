"""Configuration for the Hokej-Core registration engine."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'hokej.db'}",
)
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "").lower() in ("1", "true", "yes")


def _parse_int(value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


# Comma-separated user IDs. Invalid items are skipped.
def _parse_user_ids(value: str) -> set[int]:
    if not value:
        return set()
    result = set()
    for x in value.split(","):
        try:
            result.add(int(x.strip()))
        except ValueError:
            continue
    return result


# Players may change their own registration until this long after match start
PLAYER_EDIT_WINDOW_MINUTES = _parse_int(os.getenv("PLAYER_EDIT_WINDOW_MINUTES"), 30)

# Reminder scan: send REMINDER_HOURS_BEFORE the match (minus tolerance), look REMINDER_HORIZON_HOURS ahead
REMINDER_HOURS_BEFORE = _parse_int(os.getenv("REMINDER_HOURS_BEFORE"), 24)
REMINDER_TOLERANCE_MINUTES = _parse_int(os.getenv("REMINDER_TOLERANCE_MINUTES"), 5)
REMINDER_HORIZON_HOURS = _parse_int(os.getenv("REMINDER_HORIZON_HOURS"), 48)

# Demo / protected accounts: writes by these user IDs are vetoed by the write guard
PROTECTED_USER_IDS = _parse_user_ids(os.getenv("PROTECTED_USER_IDS", ""))

# Default notes for administrative no-show handling
DEFAULT_NO_EXCUSED_NOTE = os.getenv("DEFAULT_NO_EXCUSED_NOTE", "Did not show up without an excuse")
DEFAULT_CANCEL_NO_EXCUSED_NOTE = os.getenv("DEFAULT_CANCEL_NO_EXCUSED_NOTE", "Genuinely could not attend")
