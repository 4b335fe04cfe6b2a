"""Candle interval registry and UTC bucket alignment."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Tuple

from market_tracker.core.timeutils import as_utc

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Interval:
    code: str
    width: timedelta

    def floor(self, dt: datetime) -> datetime:
        """Start of the bucket containing `dt`, aligned to the UTC epoch."""
        dt = as_utc(dt)
        return EPOCH + ((dt - EPOCH) // self.width) * self.width

    def bucket(self, dt: datetime) -> Tuple[datetime, datetime]:
        start = self.floor(dt)
        return start, start + self.width


INTERVALS = {
    "1h": Interval("1h", timedelta(hours=1)),
    "1d": Interval("1d", timedelta(days=1)),
}


def normalize_interval(code: str) -> Interval:
    v = code.strip().lower()
    if v not in INTERVALS:
        raise ValueError(f"unsupported interval {code!r}; choose one of {sorted(INTERVALS)}")
    return INTERVALS[v]
