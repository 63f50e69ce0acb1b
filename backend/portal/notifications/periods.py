"""Calendar-day and ISO-week identifiers.

All helpers work on the local calendar: an aware datetime is converted to the
configured timezone first, a naive one is taken as already local.
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from ..config import settings


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def local_now() -> datetime:
    return datetime.now(local_tz())


def _local_date(moment: date | datetime) -> date:
    if isinstance(moment, datetime):
        if moment.tzinfo is not None:
            moment = moment.astimezone(local_tz())
        return moment.date()
    return moment


def iso_date(moment: date | datetime) -> str:
    """Return ``YYYY-MM-DD`` for the local calendar day of ``moment``."""
    return _local_date(moment).isoformat()


def iso_week_key(moment: date | datetime) -> str:
    """Return ``YYYY-Www``, the ISO year and week of the week's Thursday."""
    year, week, _ = _local_date(moment).isocalendar()
    return f"{year}-W{week:02d}"


def week_bounds(moment: date | datetime) -> tuple[datetime, datetime]:
    """Return Monday 00:00 and the following Sunday at the last instant of the day."""
    day = _local_date(moment)
    monday = day - timedelta(days=day.weekday())
    sunday = monday + timedelta(days=6)
    aware = isinstance(moment, datetime) and moment.tzinfo is not None
    tzinfo = local_tz() if aware else None
    return (
        datetime.combine(monday, time.min, tzinfo=tzinfo),
        datetime.combine(sunday, time.max, tzinfo=tzinfo),
    )
