"""Notification inbox routes."""

import asyncio
import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..audit.service import audit
from ..config import settings
from ..database.base import get_db
from ..dependencies import get_client_id, get_ledger, get_scheduler
from ..rate_limit import limiter
from .exceptions import ReadError, WriteError
from .external import ingest_external_event, notify_staff_attendance_submission, staff_attendance_key
from .ledger import NotificationLedger
from .periods import local_now
from .scheduler import DetectorFamily, GenerationScheduler
from .schemas import (
    ExternalEventRequest,
    InboxResponse,
    InboxSnapshot,
    NotificationOut,
    StaffAttendanceSubmission,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

_UNAVAILABLE = {"error": "Notification store unavailable, try again"}


def _to_uuid(value: str) -> UUID | None:
    """Convert string to UUID, returning None on failure."""
    try:
        return UUID(value)
    except (ValueError, AttributeError):
        return None


def _inbox_body(items: list[NotificationOut], generating: bool = False, families: dict | None = None) -> dict:
    snapshot = InboxSnapshot.from_items(items)
    return InboxResponse(
        items=snapshot.items,
        unread=snapshot.unread,
        generating=generating,
        families=families or {},
    ).model_dump(mode="json")


@router.get("")
def list_notifications(
    client_id: str = Depends(get_client_id),
    ledger: NotificationLedger = Depends(get_ledger),
    scheduler: GenerationScheduler = Depends(get_scheduler),
):
    try:
        items = ledger.list_by_audience(settings.audience_role)
    except ReadError:
        return JSONResponse(_UNAVAILABLE, status_code=503)
    return JSONResponse(_inbox_body(items, generating=scheduler.is_running(client_id)))


@router.post("/open")
@limiter.limit(settings.rate_limit_inbox_open)
def open_inbox(
    request: Request,
    background_tasks: BackgroundTasks,
    academic_year: str = "",
    force: bool = False,
    client_id: str = Depends(get_client_id),
    ledger: NotificationLedger = Depends(get_ledger),
    scheduler: GenerationScheduler = Depends(get_scheduler),
):
    """Open the inbox: answer with the current state, generate due notifications in the background."""
    year = academic_year or settings.default_academic_year or None
    if force:
        scheduler.reset(client_id)

    now = local_now()
    generating = scheduler.is_running(client_id)
    if not generating and scheduler.due_families(client_id, year, now):
        background_tasks.add_task(scheduler.trigger, client_id, year, now)
        generating = True

    families = {f.value: scheduler.state(client_id, f, year, now).value for f in DetectorFamily}

    try:
        items = ledger.list_by_audience(settings.audience_role)
    except ReadError:
        return JSONResponse({**_UNAVAILABLE, "generating": generating, "families": families}, status_code=503)
    return JSONResponse(_inbox_body(items, generating=generating, families=families))


@router.get("/stream")
async def stream_notifications(request: Request, ledger: NotificationLedger = Depends(get_ledger)):
    """Server-Sent Events: the full ordered inbox after every ledger change."""
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()

    def _push(items: list[NotificationOut]) -> None:
        # Ledger writes publish from worker threads
        loop.call_soon_threadsafe(updates.put_nowait, items)

    unsubscribe = await run_in_threadpool(ledger.subscribe, settings.audience_role, _push)

    async def _events():
        try:
            while not await request.is_disconnected():
                try:
                    items = await asyncio.wait_for(updates.get(), settings.stream_heartbeat_seconds)
                except TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                payload = InboxSnapshot.from_items(items).model_dump_json()
                yield f"event: inbox\ndata: {payload}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    request: Request,
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db),
    ledger: NotificationLedger = Depends(get_ledger),
):
    uid = _to_uuid(notification_id)
    if uid is None:
        return JSONResponse({"error": "Notification not found"}, status_code=404)
    try:
        found = ledger.mark_read(uid)
    except WriteError:
        return JSONResponse(_UNAVAILABLE, status_code=503)
    if not found:
        return JSONResponse({"error": "Notification not found"}, status_code=404)
    audit(db, request, "notification_read", str(uid), client_id)
    db.commit()
    return JSONResponse({"ok": True})


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: str,
    request: Request,
    client_id: str = Depends(get_client_id),
    db: Session = Depends(get_db),
    ledger: NotificationLedger = Depends(get_ledger),
):
    uid = _to_uuid(notification_id)
    if uid is None:
        return JSONResponse({"error": "Notification not found"}, status_code=404)
    try:
        found = ledger.delete(uid)
    except WriteError:
        return JSONResponse(_UNAVAILABLE, status_code=503)
    if not found:
        return JSONResponse({"error": "Notification not found"}, status_code=404)
    audit(db, request, "notification_delete", str(uid), client_id)
    db.commit()
    return JSONResponse({"ok": True})


@router.post("/events")
def ingest_event(
    payload: ExternalEventRequest,
    request: Request,
    db: Session = Depends(get_db),
    ledger: NotificationLedger = Depends(get_ledger),
):
    """Record a notification built by another subsystem, deduplicated by its key."""
    try:
        new_id = ingest_external_event(
            ledger,
            payload.kind,
            payload.dedup_key,
            payload.title,
            payload.body,
            payload.meta,
            settings.audience_role,
        )
    except ValidationError:
        return JSONResponse({"error": f"meta does not match kind {payload.kind.value}"}, status_code=422)
    except (ReadError, WriteError):
        return JSONResponse(_UNAVAILABLE, status_code=503)

    if new_id is None:
        return JSONResponse({"ok": True, "created": False})
    audit(db, request, "notification_ingest", payload.dedup_key)
    db.commit()
    return JSONResponse({"ok": True, "created": True, "id": str(new_id)}, status_code=201)


@router.post("/staff-attendance")
def staff_attendance_submitted(
    submission: StaffAttendanceSubmission,
    request: Request,
    db: Session = Depends(get_db),
    ledger: NotificationLedger = Depends(get_ledger),
):
    try:
        new_id = notify_staff_attendance_submission(ledger, submission, settings.audience_role)
    except (ReadError, WriteError):
        return JSONResponse(_UNAVAILABLE, status_code=503)
    if new_id is None:
        return JSONResponse({"ok": True, "created": False})
    audit(db, request, "staff_attendance", staff_attendance_key(submission))
    db.commit()
    return JSONResponse({"ok": True, "created": True, "id": str(new_id)}, status_code=201)
