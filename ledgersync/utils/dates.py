"""Date and timestamp helpers shared by the database layer and services."""

import re
from datetime import date, datetime, timezone

# PostgREST trims trailing zeros from fractional seconds ("12:00:00.12345+00:00")
_FRACTION = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_unix(value) -> datetime:
    """Convert unix seconds to an aware UTC datetime, raising ValueError when out of range."""
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"timestamp out of range: {value!r}") from e


def parse_timestamp(value) -> datetime | None:
    """Parse a timestamp coming back from PostgREST.

    Handles ISO strings with a trailing ``Z``, naive values (assumed UTC),
    fractional seconds of any precision, datetime objects and unix seconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = from_unix(value)
    else:
        text = str(value).replace("Z", "+00:00")
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value) -> date | None:
    """Parse a calendar date from an ISO string, datetime or unix seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return from_unix(value).date()
    text = str(value)
    if "T" in text or " " in text:
        return parse_timestamp(text).date()
    return date.fromisoformat(text[:10])
