"""Demand-driven generation scheduler.

Opening the inbox is the only trigger. Each detector family keeps a "last
successful period" stamp per client (calendar day for birthdays, ISO week for
absence streaks); a family whose stamp differs from the current period is due.
A client never has two passes in flight: a trigger arriving while one runs is
a no-op.
"""

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from ..directory.sources import AttendanceSource, ProfileSource
from ..integrations.cache import CacheService
from .absences import generate_absence_alerts
from .birthdays import generate_birthday_notifications
from .exceptions import NotificationError
from .ledger import NotificationLedger
from .periods import iso_date, iso_week_key, local_now

logger = logging.getLogger(__name__)

_STAMP_NAMESPACE = "notifgen"


class DetectorFamily(enum.StrEnum):
    BIRTHDAYS = "birthday"
    ABSENCES = "absence"


class GenerationState(enum.StrEnum):
    IDLE = "idle"
    DUE = "due"
    RUNNING = "running"


@dataclass
class FamilyOutcome:
    family: DetectorFamily
    succeeded: bool
    created: int = 0
    error: str | None = None


@dataclass
class GenerationReport:
    client_id: str
    outcomes: list[FamilyOutcome] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(o.created for o in self.outcomes)

    @property
    def succeeded(self) -> bool:
        return all(o.succeeded for o in self.outcomes)


class GenerationScheduler:
    def __init__(
        self,
        ledger: NotificationLedger,
        profiles: ProfileSource,
        attendance: AttendanceSource,
        cache: CacheService,
        audience: str,
        stamp_ttl: int,
    ) -> None:
        self._ledger = ledger
        self._profiles = profiles
        self._attendance = attendance
        self._cache = cache
        self._audience = audience
        self._stamp_ttl = stamp_ttl
        self._in_flight: dict[str, set[DetectorFamily]] = {}
        self._lock = threading.Lock()

    # ── Period stamps ─────────────────────────────────────────────────

    @staticmethod
    def current_period(family: DetectorFamily, now: datetime) -> str:
        if family is DetectorFamily.BIRTHDAYS:
            return iso_date(now)
        return iso_week_key(now)

    def _stamp_key(self, client_id: str, family: DetectorFamily, academic_year: str | None) -> str:
        key = f"{_STAMP_NAMESPACE}:{client_id}:{family.value}"
        if family is DetectorFamily.ABSENCES:
            key += f":{academic_year or ''}"
        return key

    def _is_due(self, client_id: str, family: DetectorFamily, academic_year: str | None, now: datetime) -> bool:
        stamp = self._cache.get(self._stamp_key(client_id, family, academic_year))
        return stamp != self.current_period(family, now)

    def reset(self, client_id: str) -> int:
        """Forget every stamp of ``client_id`` so all families become due."""
        dropped = self._cache.invalidate(f"{_STAMP_NAMESPACE}:{client_id}:")
        logger.info("Generation stamps reset for client %s (%d dropped)", client_id, dropped)
        return dropped

    # ── State ─────────────────────────────────────────────────────────

    def is_running(self, client_id: str) -> bool:
        with self._lock:
            return client_id in self._in_flight

    def state(
        self,
        client_id: str,
        family: DetectorFamily,
        academic_year: str | None = None,
        now: datetime | None = None,
    ) -> GenerationState:
        now = now or local_now()
        with self._lock:
            if family in self._in_flight.get(client_id, ()):
                return GenerationState.RUNNING
        if self._is_due(client_id, family, academic_year, now):
            return GenerationState.DUE
        return GenerationState.IDLE

    def due_families(
        self,
        client_id: str,
        academic_year: str | None = None,
        now: datetime | None = None,
    ) -> list[DetectorFamily]:
        """Families that a trigger would run now. Absences need an academic year."""
        now = now or local_now()
        due = []
        for family in DetectorFamily:
            if family is DetectorFamily.ABSENCES and not academic_year:
                continue
            if self._is_due(client_id, family, academic_year, now):
                due.append(family)
        return due

    # ── Trigger ───────────────────────────────────────────────────────

    def trigger(
        self,
        client_id: str,
        academic_year: str | None = None,
        now: datetime | None = None,
    ) -> GenerationReport | None:
        """Run every due family for ``client_id``.

        Returns None when a pass is already in flight for this client or
        nothing is due.
        """
        now = now or local_now()
        if self.is_running(client_id):
            logger.debug("Generation already running for client %s", client_id)
            return None
        # Stamps are read outside the lock; only the in-flight claim is serialized
        due = self.due_families(client_id, academic_year, now)
        if not due:
            return None
        with self._lock:
            if client_id in self._in_flight:
                logger.debug("Generation already running for client %s", client_id)
                return None
            self._in_flight[client_id] = set(due)

        report = GenerationReport(client_id=client_id)
        try:
            for family in due:
                report.outcomes.append(self._run_family(client_id, family, academic_year, now))
        finally:
            with self._lock:
                self._in_flight.pop(client_id, None)

        logger.info(
            "Generation pass for client %s: %s, %d new",
            client_id,
            ", ".join(f"{o.family.value}={'ok' if o.succeeded else 'failed'}" for o in report.outcomes),
            report.created,
        )
        return report

    def _run_family(
        self,
        client_id: str,
        family: DetectorFamily,
        academic_year: str | None,
        now: datetime,
    ) -> FamilyOutcome:
        try:
            if family is DetectorFamily.BIRTHDAYS:
                created = generate_birthday_notifications(self._ledger, self._profiles, now, self._audience)
            else:
                created = generate_absence_alerts(self._ledger, self._attendance, academic_year, now, self._audience)
        except NotificationError as exc:
            # Stamp not advanced: the family stays due for the next trigger
            logger.warning("%s pass failed for client %s: %s", family.value, client_id, exc)
            return FamilyOutcome(family=family, succeeded=False, error=str(exc))
        except Exception as exc:
            logger.exception("%s pass crashed for client %s", family.value, client_id)
            return FamilyOutcome(family=family, succeeded=False, error=str(exc))

        self._cache.set(
            self._stamp_key(client_id, family, academic_year),
            self.current_period(family, now),
            self._stamp_ttl,
        )
        return FamilyOutcome(family=family, succeeded=True, created=created)
