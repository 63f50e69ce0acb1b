"""Live inbox: a subscribed view of the ledger with optimistic mutations.

The ledger subscription is the source of truth. ``mark_read`` and ``delete``
change the local view first, then write; a failed write restores the exact
pre-mutation view.
"""

import logging
import threading
from collections.abc import Callable
from uuid import UUID

from .exceptions import WriteError
from .ledger import NotificationLedger
from .schemas import InboxSnapshot, NotificationOut

logger = logging.getLogger(__name__)


class LiveInbox:
    def __init__(self, ledger: NotificationLedger, audience: str) -> None:
        self._ledger = ledger
        self._audience = audience
        self._items: list[NotificationOut] = []
        self._unread = 0
        self.error: str | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._lock = threading.RLock()

    def __enter__(self) -> "LiveInbox":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._ledger.subscribe(self._audience, self._on_snapshot)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def items(self) -> list[NotificationOut]:
        with self._lock:
            return list(self._items)

    @property
    def unread(self) -> int:
        with self._lock:
            return self._unread

    def snapshot(self) -> InboxSnapshot:
        with self._lock:
            return InboxSnapshot(items=list(self._items), unread=self._unread)

    def _on_snapshot(self, items: list[NotificationOut]) -> None:
        with self._lock:
            self._items = list(items)
            self._unread = sum(1 for n in items if not n.read)

    def _restore(self, items: list[NotificationOut], unread: int, exc: WriteError) -> None:
        with self._lock:
            self._items = items
            self._unread = unread
            self.error = str(exc)

    def mark_read(self, notification_id: UUID) -> bool:
        """Mark one notification read.

        Returns False if the write was rolled back or the notification was
        deleted elsewhere, in which case it is dropped from the view.
        """
        with self._lock:
            prev_items, prev_unread = self._items, self._unread
            target = next((n for n in prev_items if n.id == notification_id), None)
            if target is None or target.read:
                return True
            self._items = [n.model_copy(update={"read": True}) if n.id == notification_id else n for n in prev_items]
            self._unread = max(0, prev_unread - 1)
            self.error = None

        try:
            found = self._ledger.mark_read(notification_id)
        except WriteError as exc:
            logger.warning("mark_read rolled back for %s: %s", notification_id, exc)
            self._restore(prev_items, prev_unread, exc)
            return False
        if not found:
            with self._lock:
                self._items = [n for n in self._items if n.id != notification_id]
                self._unread = sum(1 for n in self._items if not n.read)
            return False
        return True

    def delete(self, notification_id: UUID) -> bool:
        """Delete one notification. Returns False if the delete was rolled back."""
        with self._lock:
            prev_items, prev_unread = self._items, self._unread
            remaining = [n for n in prev_items if n.id != notification_id]
            if len(remaining) == len(prev_items):
                return True
            self._items = remaining
            self._unread = sum(1 for n in remaining if not n.read)
            self.error = None

        try:
            self._ledger.delete(notification_id)
        except WriteError as exc:
            logger.warning("delete rolled back for %s: %s", notification_id, exc)
            self._restore(prev_items, prev_unread, exc)
            return False
        return True
