from __future__ import annotations
from datetime import date, datetime, timezone


def utcnow() -> str:
    """Current UTC time as the ISO text stored in every timestamp column."""
    return datetime.utcnow().isoformat(timespec="seconds") + "Z"


def today() -> str:
    return datetime.now(tz=timezone.utc).date().isoformat()


def to_iso_timestamp(value: date | datetime | str | None) -> str | None:
    """Normalize an acquisition date/time into sortable ISO text.

    Dates become midnight UTC, naive datetimes are taken as UTC, and aware
    ones are converted, so plain string ordering matches time ordering.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat(timespec="seconds") + "Z"
    return datetime(value.year, value.month, value.day).isoformat(timespec="seconds") + "Z"


def to_iso_date(value: date | datetime | str | None) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(value.strip()[:10]).isoformat()
