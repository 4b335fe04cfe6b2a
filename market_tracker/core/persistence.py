import aiosqlite
import logging
import os
from datetime import datetime
from typing import Iterable, List, Optional

from market_tracker.core.models import Candle, LiveStats, PriceTick
from market_tracker.core.timeutils import from_db_time, to_db_time

logger = logging.getLogger("market_tracker")

class PersistenceService:
    """
    Owns the three pipeline tables. Every write is an upsert keyed by the table's
    natural unique constraint and commits on its own, so overlapping or retried
    runs converge instead of duplicating.
    """

    def __init__(self, db_path: str = "data/market.db"):
        self.db_path = db_path
        # Ensure directory exists
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    async def init_db(self):
        """Initialize DB Schema and WAL mode"""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")

            # Raw ticks, append-only
            await db.execute("""
                CREATE TABLE IF NOT EXISTS item_price_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id INTEGER NOT NULL,
                    price NUMERIC NOT NULL,
                    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now')),
                    CONSTRAINT unique_item_timestamp UNIQUE (item_id, timestamp)
                )
            """)

            # OHLC candles, timestamp is the UTC bucket start
            await db.execute("""
                CREATE TABLE IF NOT EXISTS item_price_candle (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    interval VARCHAR(2) NOT NULL,
                    item_id INTEGER NOT NULL,
                    open NUMERIC NOT NULL,
                    high NUMERIC NOT NULL,
                    low NUMERIC NOT NULL,
                    close NUMERIC NOT NULL,
                    timestamp TEXT NOT NULL,
                    CONSTRAINT unique_item_timestamp_interval UNIQUE (item_id, timestamp, interval)
                )
            """)

            # Current-day snapshot; updated_at drives the UTC midnight reset
            await db.execute("""
                CREATE TABLE IF NOT EXISTS live_stats (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id INTEGER NOT NULL,
                    last_known_price NUMERIC NOT NULL,
                    opening_price NUMERIC NOT NULL,
                    highest_price_today NUMERIC NOT NULL,
                    lowest_price_today NUMERIC NOT NULL,
                    supply INTEGER NOT NULL,
                    updated_at TEXT,
                    CONSTRAINT unique_item_id UNIQUE (item_id)
                )
            """)

            await db.execute("CREATE INDEX IF NOT EXISTS idx_price_history_timestamp ON item_price_history (timestamp)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_price_candle_interval_timestamp ON item_price_candle (interval, timestamp)")
            await db.commit()
            logger.info(f"DB Initialized at {self.db_path} (WAL Mode)")

    # --- Raw ticks ---

    async def insert_price_ticks(self, ticks: Iterable[PriceTick]) -> int:
        """Insert-or-ignore on (item_id, timestamp). Returns rows actually inserted."""
        rows = [(t.item_id, t.price, to_db_time(t.timestamp)) for t in ticks]
        if not rows:
            return 0
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.executemany("""
                INSERT INTO item_price_history (item_id, price, timestamp)
                VALUES (?, ?, ?)
                ON CONFLICT (item_id, timestamp) DO NOTHING
            """, rows)
            inserted = cursor.rowcount
            await db.commit()
        return inserted

    async def get_ticks_between(self, start: datetime, end: datetime) -> List[PriceTick]:
        """All ticks with start <= timestamp < end, ordered by item then time"""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("""
                SELECT item_id, price, timestamp FROM item_price_history
                WHERE timestamp >= ? AND timestamp < ?
                ORDER BY item_id, timestamp ASC
            """, (to_db_time(start), to_db_time(end))) as cursor:
                rows = await cursor.fetchall()
        return [PriceTick(item_id=r[0], price=r[1], timestamp=from_db_time(r[2])) for r in rows]

    async def get_latest_price(self, item_id: int) -> Optional[float]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("""
                SELECT price FROM item_price_history
                WHERE item_id = ?
                ORDER BY timestamp DESC
                LIMIT 1
            """, (item_id,)) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

    # --- Candles ---

    async def upsert_candles(self, candles: Iterable[Candle]) -> int:
        """
        First sight of a bucket inserts it. Later sights widen high/low and
        advance close; open is never rewritten.
        """
        rows = [
            (c.interval, c.item_id, c.open, c.high, c.low, c.close, to_db_time(c.timestamp))
            for c in candles
        ]
        if not rows:
            return 0
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany("""
                INSERT INTO item_price_candle (interval, item_id, open, high, low, close, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (item_id, timestamp, interval) DO UPDATE SET
                    high = MAX(item_price_candle.high, excluded.high),
                    low = MIN(item_price_candle.low, excluded.low),
                    close = excluded.close
            """, rows)
            await db.commit()
        return len(rows)

    async def get_candles_between(self, interval: str, start: datetime, end: datetime) -> List[Candle]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("""
                SELECT interval, item_id, open, high, low, close, timestamp FROM item_price_candle
                WHERE interval = ? AND timestamp >= ? AND timestamp < ?
                ORDER BY item_id, timestamp ASC
            """, (interval, to_db_time(start), to_db_time(end))) as cursor:
                rows = await cursor.fetchall()
        return [_candle_from_row(r) for r in rows]

    # --- Live stats ---

    async def upsert_live_stats(self, stats: LiveStats):
        """
        A write on a later UTC date than the stored row resets the day to the
        incoming values. A write on the same date merges (high up, low down).
        A write older than the stored row leaves the row as is.
        """
        if stats.updated_at is None:
            raise ValueError("live stats need an updated_at instant")
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT INTO live_stats (
                    item_id, last_known_price, opening_price,
                    highest_price_today, lowest_price_today, supply, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (item_id) DO UPDATE SET
                    opening_price = CASE
                        WHEN live_stats.updated_at IS NULL
                            OR date(excluded.updated_at) > date(live_stats.updated_at)
                            THEN excluded.opening_price
                        ELSE live_stats.opening_price END,
                    highest_price_today = CASE
                        WHEN live_stats.updated_at IS NULL
                            OR date(excluded.updated_at) > date(live_stats.updated_at)
                            THEN excluded.highest_price_today
                        WHEN date(excluded.updated_at) = date(live_stats.updated_at)
                            THEN MAX(live_stats.highest_price_today, excluded.highest_price_today)
                        ELSE live_stats.highest_price_today END,
                    lowest_price_today = CASE
                        WHEN live_stats.updated_at IS NULL
                            OR date(excluded.updated_at) > date(live_stats.updated_at)
                            THEN excluded.lowest_price_today
                        WHEN date(excluded.updated_at) = date(live_stats.updated_at)
                            THEN MIN(live_stats.lowest_price_today, excluded.lowest_price_today)
                        ELSE live_stats.lowest_price_today END,
                    last_known_price = CASE
                        WHEN live_stats.updated_at IS NULL OR excluded.updated_at >= live_stats.updated_at
                            THEN excluded.last_known_price
                        ELSE live_stats.last_known_price END,
                    supply = CASE
                        WHEN live_stats.updated_at IS NULL OR excluded.updated_at >= live_stats.updated_at
                            THEN excluded.supply
                        ELSE live_stats.supply END,
                    updated_at = CASE
                        WHEN live_stats.updated_at IS NULL OR excluded.updated_at >= live_stats.updated_at
                            THEN excluded.updated_at
                        ELSE live_stats.updated_at END
            """, (
                stats.item_id, stats.last_known_price, stats.opening_price,
                stats.highest_price_today, stats.lowest_price_today, stats.supply,
                to_db_time(stats.updated_at),
            ))
            await db.commit()

    # --- Dashboard reads (read-only) ---

    async def get_live_stats(self, item_id: int) -> Optional[LiveStats]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("""
                SELECT item_id, last_known_price, opening_price, highest_price_today,
                       lowest_price_today, supply, updated_at
                FROM live_stats WHERE item_id = ?
            """, (item_id,)) as cursor:
                row = await cursor.fetchone()
        if not row:
            return None
        return LiveStats(
            item_id=row[0],
            last_known_price=row[1],
            opening_price=row[2],
            highest_price_today=row[3],
            lowest_price_today=row[4],
            supply=row[5],
            updated_at=from_db_time(row[6]) if row[6] else None,
        )

    async def get_price_history(self, item_id: int, start: datetime, end: datetime, limit: Optional[int] = None) -> List[PriceTick]:
        """Newest first, like the dashboard's recent-prices panel"""
        query = """
            SELECT item_id, price, timestamp FROM item_price_history
            WHERE item_id = ? AND timestamp >= ? AND timestamp < ?
            ORDER BY timestamp DESC
        """
        params = [item_id, to_db_time(start), to_db_time(end)]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [PriceTick(item_id=r[0], price=r[1], timestamp=from_db_time(r[2])) for r in rows]

    async def get_candles(self, item_id: int, interval: str, start: datetime, end: datetime) -> List[Candle]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("""
                SELECT interval, item_id, open, high, low, close, timestamp FROM item_price_candle
                WHERE item_id = ? AND interval = ? AND timestamp >= ? AND timestamp < ?
                ORDER BY timestamp ASC
            """, (item_id, interval, to_db_time(start), to_db_time(end))) as cursor:
                rows = await cursor.fetchall()
        return [_candle_from_row(r) for r in rows]

def _candle_from_row(row) -> Candle:
    return Candle(
        interval=row[0],
        item_id=row[1],
        open=row[2],
        high=row[3],
        low=row[4],
        close=row[5],
        timestamp=from_db_time(row[6]),
    )
