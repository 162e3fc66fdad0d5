"""Storage abstractions for the Copilot monitor."""

from .journal import ActivityJournal, JournalUnavailableError
from .models import JournalEvent, TransitionRecord

__all__ = [
    "ActivityJournal",
    "JournalEvent",
    "JournalUnavailableError",
    "TransitionRecord",
]
