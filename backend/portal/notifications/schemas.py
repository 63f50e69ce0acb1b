"""Notification request/response schemas and the per-kind meta union."""

from datetime import UTC, datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter

from .models import NotificationKind


class BirthdayMeta(BaseModel):
    kind: Literal["birthday"] = "birthday"
    subject_id: str
    date: str


class AbsenceMeta(BaseModel):
    kind: Literal["absence_alert"] = "absence_alert"
    student_id: str
    max_run: int
    week_key: str


class ExternalEventMeta(BaseModel):
    kind: Literal["external_event"] = "external_event"
    source: str = ""
    details: dict[str, str] = Field(default_factory=dict)


NotificationMeta = Annotated[
    BirthdayMeta | AbsenceMeta | ExternalEventMeta,
    Field(discriminator="kind"),
]

_meta_adapter: TypeAdapter[NotificationMeta] = TypeAdapter(NotificationMeta)


def parse_meta(kind: NotificationKind, raw: dict | None) -> NotificationMeta:
    """Validate a stored meta bag against the variant its record's kind requires."""
    return _meta_adapter.validate_python({**(raw or {}), "kind": NotificationKind(kind).value})


class NotificationDraft(BaseModel):
    """A candidate notification, built by a detector before the dedup check."""

    kind: NotificationKind
    title: str = Field(..., min_length=1, max_length=500)
    body: str = ""
    audience: str
    dedup_key: str = Field(..., min_length=1, max_length=500)
    meta: NotificationMeta
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class NotificationOut(BaseModel):
    id: UUID
    kind: NotificationKind
    title: str
    body: str
    created_at: datetime
    read: bool
    audience: str
    dedup_key: str
    meta: NotificationMeta | None = None


class InboxSnapshot(BaseModel):
    items: list[NotificationOut]
    unread: int

    @classmethod
    def from_items(cls, items: list[NotificationOut]) -> "InboxSnapshot":
        return cls(items=items, unread=sum(1 for n in items if not n.read))


class InboxResponse(InboxSnapshot):
    generating: bool = False
    families: dict[str, str] = Field(default_factory=dict)


class ExternalEventRequest(BaseModel):
    kind: NotificationKind = NotificationKind.EXTERNAL_EVENT
    dedup_key: str = Field(..., min_length=1, max_length=500)
    title: str = Field(..., min_length=1, max_length=500)
    body: str = ""
    meta: dict = Field(default_factory=dict)


class StaffAttendanceSubmission(BaseModel):
    teacher_id: str = ""
    teacher_name: str = ""
    class_id: str = Field(..., min_length=1)
    class_label: str = ""
    subject_id: str = Field(..., min_length=1)
    subject_label: str = ""
    date: datetime
    start: str = Field(..., min_length=1, max_length=5)
    end: str = Field(..., min_length=1, max_length=5)
    room: str = ""
