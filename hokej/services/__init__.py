"""Registration engine services."""
from hokej.services.actor import SYSTEM_ACTOR, Actor, ActorRole
from hokej.services.capacity import CapacityGuard, SlotDecision, SlotOutcome
from hokej.services.locks import MatchLocks
from hokej.services.notifications import LoggingNotifier, Notification, NotificationKind, Notifier
from hokej.services.registrations import RegistrationService
from hokej.services.reminders import ReminderScanner
from hokej.services.waitlist import Vacancy, WaitlistPromoter
from hokej.services.write_guard import AllowAllWriteGuard, ProtectedAccountGuard, WriteGuard

__all__ = [
    "SYSTEM_ACTOR",
    "Actor",
    "ActorRole",
    "AllowAllWriteGuard",
    "CapacityGuard",
    "LoggingNotifier",
    "MatchLocks",
    "Notification",
    "NotificationKind",
    "Notifier",
    "ProtectedAccountGuard",
    "RegistrationService",
    "ReminderScanner",
    "SlotDecision",
    "SlotOutcome",
    "Vacancy",
    "WaitlistPromoter",
    "WriteGuard",
]
