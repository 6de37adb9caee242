from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    # naive UTC everywhere, same convention as the DB columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_utc(s: str) -> datetime:
    # API ISO8601 -> naive UTC datetime
    dt = datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def iso_z(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def hours(h: float) -> timedelta:
    return timedelta(seconds=h * 3600)
