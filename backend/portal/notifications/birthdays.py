"""Birthday detector: one notification per person whose birthday is today."""

import logging
from datetime import date, datetime

from ..directory.sources import ProfileRecord, ProfileSource
from .dedup import birthday_key
from .exceptions import WriteError
from .ledger import NotificationLedger
from .models import NotificationKind
from .periods import iso_date
from .schemas import BirthdayMeta, NotificationDraft

logger = logging.getLogger(__name__)


def normalize_birth_date(raw: date | datetime | str | None) -> str | None:
    """Return the ISO calendar date of a stored birth date, or None if unusable."""
    if raw is None:
        return None
    if isinstance(raw, date):
        # An aware instant is read on the local calendar
        return iso_date(raw)
    if isinstance(raw, str):
        text = raw.strip()[:10]
        try:
            return date.fromisoformat(text).isoformat()
        except ValueError:
            return None
    return None


def is_birthday(birth_iso: str, today_iso: str) -> bool:
    # Month-day suffix match; Feb 29 birthdays only match in leap years
    return birth_iso[4:] == today_iso[4:]


def birthday_draft(profile: ProfileRecord, today_iso: str, audience: str) -> NotificationDraft:
    who = profile.display_name.strip()
    return NotificationDraft(
        kind=NotificationKind.BIRTHDAY,
        title=f"Birthday: {who or 'User'}",
        body=f"Wish {who or 'them'} a happy birthday!",
        audience=audience,
        dedup_key=birthday_key(today_iso, profile.subject_id),
        meta=BirthdayMeta(subject_id=profile.subject_id, date=today_iso),
    )


def generate_birthday_notifications(
    ledger: NotificationLedger,
    profiles: ProfileSource,
    today: date | datetime,
    audience: str,
) -> int:
    """Record today's birthday notifications. Returns the number of new records.

    ReadError from the directory or the ledger aborts the pass. A WriteError
    on one candidate is logged and re-raised once the remaining candidates
    have been tried, so the pass counts as failed and runs again.
    """
    today_iso = iso_date(today)
    matches = []
    skipped = 0
    for profile in profiles.list_profiles():
        birth_iso = normalize_birth_date(profile.birth_date)
        if birth_iso is None:
            skipped += 1
            continue
        if is_birthday(birth_iso, today_iso):
            matches.append(profile)

    if skipped:
        logger.debug("Birthday scan: %d profiles without a usable birth date", skipped)

    created = 0
    failures = []
    for profile in matches:
        try:
            if ledger.record_if_new(birthday_draft(profile, today_iso, audience)) is not None:
                created += 1
        except WriteError as exc:
            failures.append(exc)

    logger.info("Birthday scan %s: %d matches, %d new", today_iso, len(matches), created)
    if failures:
        raise WriteError(f"{len(failures)} birthday notifications not recorded") from failures[0]
    return created
