"""Notification engine error taxonomy."""


class NotificationError(Exception):
    """Base class for notification engine failures."""


class ReadError(NotificationError):
    """An external source or the ledger could not be queried."""


class WriteError(NotificationError):
    """A ledger insert, update or delete did not go through."""


class DuplicateNotificationError(WriteError):
    """The ledger already holds a record with this dedup key."""

    def __init__(self, dedup_key: str) -> None:
        super().__init__(f"Notification already recorded: {dedup_key}")
        self.dedup_key = dedup_key
