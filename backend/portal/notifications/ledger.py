"""Notification ledger: the persisted store every detector writes into.

Writes commit in their own unit of work and then push a fresh, ordered
snapshot of the affected audience to every subscriber, which is how the live
inbox stays current without polling.
"""

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..database.base import session_scope
from .exceptions import DuplicateNotificationError, ReadError, WriteError
from .models import Notification
from .schemas import NotificationDraft, NotificationOut, parse_meta

logger = logging.getLogger(__name__)

Listener = Callable[[list[NotificationOut]], None]


def _to_out(row: Notification) -> NotificationOut:
    try:
        meta = parse_meta(row.kind, row.meta)
    except ValidationError:
        logger.warning("Notification %s has meta that does not match kind %s", row.id, row.kind)
        meta = None
    return NotificationOut(
        id=row.id,
        kind=row.kind,
        title=row.title,
        body=row.body or "",
        created_at=row.created_at,
        read=bool(row.read),
        audience=row.audience,
        dedup_key=row.dedup_key,
        meta=meta,
    )


def order_newest_first(items: list[NotificationOut]) -> list[NotificationOut]:
    """Sort by ``created_at`` descending; storage order is never relied on."""
    return sorted(items, key=lambda n: n.created_at, reverse=True)


class NotificationLedger:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    # ── Queries ───────────────────────────────────────────────────────

    def find_by_dedup_key(self, key: str) -> NotificationOut | None:
        try:
            with session_scope(self._session_factory) as db:
                row = db.query(Notification).filter(Notification.dedup_key == key).first()
                return _to_out(row) if row else None
        except SQLAlchemyError as exc:
            raise ReadError(f"ledger lookup failed for {key}") from exc

    def list_by_audience(self, audience: str) -> list[NotificationOut]:
        try:
            with session_scope(self._session_factory) as db:
                rows = db.query(Notification).filter(Notification.audience == audience).all()
                return order_newest_first([_to_out(r) for r in rows])
        except SQLAlchemyError as exc:
            raise ReadError(f"ledger listing failed for audience {audience}") from exc

    # ── Writes ────────────────────────────────────────────────────────

    def insert(self, draft: NotificationDraft) -> UUID:
        """Persist ``draft`` and return its id.

        Raises DuplicateNotificationError when the dedup key is already taken
        and WriteError when the store cannot be written.
        """
        try:
            with session_scope(self._session_factory) as db:
                row = Notification(
                    kind=draft.kind,
                    title=draft.title,
                    body=draft.body,
                    created_at=draft.created_at,
                    read=False,
                    audience=draft.audience,
                    dedup_key=draft.dedup_key,
                    meta=draft.meta.model_dump(mode="json"),
                )
                db.add(row)
                db.flush()
                new_id = row.id
        except IntegrityError as exc:
            raise DuplicateNotificationError(draft.dedup_key) from exc
        except SQLAlchemyError as exc:
            logger.error("Ledger insert failed for %s: %s", draft.dedup_key, exc)
            raise WriteError(f"insert failed for {draft.dedup_key}") from exc

        self._publish(draft.audience)
        return new_id

    def record_if_new(self, draft: NotificationDraft) -> UUID | None:
        """Dedup check then insert. Returns None when the fact was already recorded."""
        if self.find_by_dedup_key(draft.dedup_key) is not None:
            logger.debug("Skip %s: already recorded", draft.dedup_key)
            return None
        try:
            return self.insert(draft)
        except DuplicateNotificationError:
            # Another client inserted between our lookup and our insert
            logger.info("Skip %s: recorded concurrently", draft.dedup_key)
            return None

    def mark_read(self, notification_id: UUID) -> bool:
        """Flag a notification as read. Returns False when it no longer exists."""
        try:
            with session_scope(self._session_factory) as db:
                row = db.query(Notification).filter(Notification.id == notification_id).first()
                if not row:
                    return False
                row.read = True
                audience = row.audience
        except SQLAlchemyError as exc:
            logger.error("Ledger mark_read failed for %s: %s", notification_id, exc)
            raise WriteError(f"mark_read failed for {notification_id}") from exc

        self._publish(audience)
        return True

    def delete(self, notification_id: UUID) -> bool:
        """Hard-delete a notification. Returns False when it no longer exists."""
        try:
            with session_scope(self._session_factory) as db:
                row = db.query(Notification).filter(Notification.id == notification_id).first()
                if not row:
                    return False
                audience = row.audience
                db.delete(row)
        except SQLAlchemyError as exc:
            logger.error("Ledger delete failed for %s: %s", notification_id, exc)
            raise WriteError(f"delete failed for {notification_id}") from exc

        self._publish(audience)
        return True

    # ── Live subscriptions ────────────────────────────────────────────

    def subscribe(self, audience: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ordered snapshots of ``audience``.

        The current snapshot is delivered right away. Returns the unsubscribe
        callable.
        """
        with self._lock:
            self._listeners[audience].append(listener)
        self._deliver(audience, [listener])

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners[audience]:
                    self._listeners[audience].remove(listener)

        return unsubscribe

    def _publish(self, audience: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(audience, ()))
        if listeners:
            self._deliver(audience, listeners)

    def _deliver(self, audience: str, listeners: list[Listener]) -> None:
        try:
            snapshot = self.list_by_audience(audience)
        except ReadError:
            # Subscribers keep their last good state
            logger.warning("Could not refresh inbox snapshot for %s", audience, exc_info=True)
            return
        for listener in listeners:
            try:
                listener(list(snapshot))
            except Exception:
                logger.exception("Notification subscriber failed for %s", audience)
