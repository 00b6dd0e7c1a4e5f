from negotiator.storage.database import Database, EventJournal

__all__ = ["Database", "EventJournal"]
