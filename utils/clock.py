from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now; all timestamps are stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds elapsed from ``start`` to ``end``, floored, never negative."""
    return max(0, int((end - start).total_seconds() // 1))
