from datetime import datetime
from itertools import groupby
from typing import List, Optional, Sequence, Tuple

from market_tracker.core.intervals import Interval, normalize_interval
from market_tracker.core.logger import logger
from market_tracker.core.models import Candle
from market_tracker.core.persistence import PersistenceService
from market_tracker.core.timeutils import utcnow

# (open, high, low, close) of one source bar; a raw tick is (p, p, p, p)
Bar = Tuple[float, float, float, float]

def aggregate(bars: Sequence[Bar]) -> Bar:
    """OHLC of time-ordered bars: first open, max high, min low, last close."""
    if not bars:
        raise ValueError("cannot aggregate an empty bucket")
    return (
        bars[0][0],
        max(b[1] for b in bars),
        min(b[2] for b in bars),
        bars[-1][3],
    )

class CandleBuilder:
    """
    Upserts candles for the bucket containing `now` and the `lookback - 1`
    buckets before it. The source is either raw ticks or a finer stored
    candle interval (e.g. 1d built from 1h).
    """

    def __init__(self, persistence: PersistenceService, interval: str = "1h", source: str = "raw", lookback: int = 1):
        self.persistence = persistence
        self.interval: Interval = normalize_interval(interval)
        self.source: Optional[Interval] = None if source == "raw" else normalize_interval(source)
        if self.source is not None and self.source.width >= self.interval.width:
            raise ValueError(f"source interval {self.source.code} must be finer than {self.interval.code}")
        if lookback < 1:
            raise ValueError("lookback must be at least 1")
        self.lookback = lookback

    async def run(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        current_start = self.interval.floor(now)
        total = 0
        for offset in range(self.lookback - 1, -1, -1):
            bucket_start = current_start - offset * self.interval.width
            total += await self.build_bucket(bucket_start)
        logger.info(f"Candle builder finished: {total} {self.interval.code} candles upserted",
                    extra={"job": "candles", "interval": self.interval.code})
        return total

    async def build_bucket(self, bucket_start: datetime) -> int:
        bucket_end = bucket_start + self.interval.width
        per_item = await self._load_bars(bucket_start, bucket_end)

        candles: List[Candle] = []
        for item_id, bars in per_item:
            o, h, l, c = aggregate(bars)
            candles.append(Candle(
                interval=self.interval.code,
                item_id=item_id,
                open=o,
                high=h,
                low=l,
                close=c,
                timestamp=bucket_start,
            ))

        # Items with no observations in the bucket get no candle
        upserted = await self.persistence.upsert_candles(candles)
        logger.debug(f"Bucket {bucket_start.isoformat()}: {upserted} candles",
                     extra={"job": "candles", "interval": self.interval.code})
        return upserted

    async def _load_bars(self, start: datetime, end: datetime) -> List[Tuple[int, List[Bar]]]:
        if self.source is None:
            ticks = await self.persistence.get_ticks_between(start, end)
            return [
                (item_id, [(t.price, t.price, t.price, t.price) for t in group])
                for item_id, group in groupby(ticks, key=lambda t: t.item_id)
            ]
        candles = await self.persistence.get_candles_between(self.source.code, start, end)
        return [
            (item_id, [(c.open, c.high, c.low, c.close) for c in group])
            for item_id, group in groupby(candles, key=lambda c: c.item_id)
        ]
