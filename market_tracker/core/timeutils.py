from datetime import datetime, timezone

# Second resolution keeps text ordering identical to time ordering in SQLite
DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to already be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def to_db_time(dt: datetime) -> str:
    return as_utc(dt).strftime(DB_TIME_FORMAT)

def from_db_time(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))

def from_epoch_ms(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms // 1000, tz=timezone.utc)
