from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through.

    MongoDB hands back naive datetimes; wrap them before comparing with utcnow().
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def as_utc(dt: datetime | None) -> datetime | None:
    """None-safe UTC conversion for API response boundaries."""
    if dt is None:
        return None
    return ensure_utc(dt)


def seconds_since(dt: datetime | None, now: datetime | None = None) -> float | None:
    """Elapsed seconds between ``dt`` and ``now`` (defaults to utcnow)."""
    if dt is None:
        return None
    now = ensure_utc(now or utcnow())
    return (now - ensure_utc(dt)).total_seconds()
