from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def iso_timestamp(value: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp used as token entropy and in logs."""
    return (value or now_utc()).isoformat()


def parse_event_date(value: date | datetime | str | None) -> date:
    """Accept a date, datetime or ISO string (``2025-10-03``) and return a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            pass
    raise ValueError(f"Unparseable event date: {value!r}")


def fmt_long_date(value: date | datetime | str | None) -> str:
    """Render dates as ``October 3, 2025``."""
    parsed = parse_event_date(value)
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"
