from datetime import datetime, timezone

def utcnow() -> datetime:
    # stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_iso(dt):
    if not dt:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

def to_naive_utc(dt: datetime | None):
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
