import pytest
import aiosqlite
from datetime import datetime, timezone
from market_tracker.core.models import Candle, PriceTick
from market_tracker.core.persistence import PersistenceService

UTC = timezone.utc

async def count_rows(db_file, table):
    async with aiosqlite.connect(db_file) as db:
        async with db.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
            return (await cursor.fetchone())[0]

@pytest.mark.asyncio
async def test_init_db_is_repeatable(tmp_path):
    db_file = tmp_path / "nested" / "market.db"
    service = PersistenceService(str(db_file))
    await service.init_db()
    await service.init_db()
    assert await count_rows(db_file, "item_price_history") == 0
    assert await count_rows(db_file, "item_price_candle") == 0
    assert await count_rows(db_file, "live_stats") == 0

@pytest.mark.asyncio
async def test_price_ticks_insert_or_ignore(tmp_path):
    db_file = tmp_path / "market.db"
    service = PersistenceService(str(db_file))
    await service.init_db()

    ts = datetime(2025, 1, 1, 10, 0, tzinfo=UTC)
    ticks = [PriceTick(item_id=111, price=100, timestamp=ts), PriceTick(item_id=112, price=5, timestamp=ts)]

    assert await service.insert_price_ticks(ticks) == 2
    # Re-scrape at the same instant
    assert await service.insert_price_ticks(ticks) == 0
    assert await count_rows(db_file, "item_price_history") == 2
    assert await service.insert_price_ticks([]) == 0

@pytest.mark.asyncio
async def test_tick_reads(tmp_path):
    service = PersistenceService(str(tmp_path / "market.db"))
    await service.init_db()
    await service.insert_price_ticks([
        PriceTick(item_id=1, price=10, timestamp=datetime(2025, 1, 1, 9, 59, 59, tzinfo=UTC)),
        PriceTick(item_id=1, price=11, timestamp=datetime(2025, 1, 1, 10, 30, tzinfo=UTC)),
        PriceTick(item_id=0, price=7, timestamp=datetime(2025, 1, 1, 10, 5, tzinfo=UTC)),
        PriceTick(item_id=1, price=12, timestamp=datetime(2025, 1, 1, 11, 0, tzinfo=UTC)),
    ])

    ticks = await service.get_ticks_between(datetime(2025, 1, 1, 10, tzinfo=UTC), datetime(2025, 1, 1, 11, tzinfo=UTC))
    assert [(t.item_id, t.price) for t in ticks] == [(0, 7), (1, 11)]
    assert ticks[0].timestamp == datetime(2025, 1, 1, 10, 5, tzinfo=UTC)

    assert await service.get_latest_price(1) == 12
    assert await service.get_latest_price(99) is None

    history = await service.get_price_history(1, datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 1, 2, tzinfo=UTC), limit=2)
    assert [t.price for t in history] == [12, 11]

@pytest.mark.asyncio
async def test_candle_upsert_merges(tmp_path):
    db_file = tmp_path / "market.db"
    service = PersistenceService(str(db_file))
    await service.init_db()
    bucket = datetime(2025, 1, 1, 10, tzinfo=UTC)

    await service.upsert_candles([Candle(interval="1h", item_id=111, open=100, high=120, low=90, close=90, timestamp=bucket)])
    await service.upsert_candles([Candle(interval="1h", item_id=111, open=999, high=130, low=95, close=130, timestamp=bucket)])

    candles = await service.get_candles(111, "1h", bucket, datetime(2025, 1, 1, 11, tzinfo=UTC))
    assert len(candles) == 1
    c = candles[0]
    assert (c.open, c.high, c.low, c.close) == (100, 130, 90, 130)
    assert c.timestamp == bucket
    assert await count_rows(db_file, "item_price_candle") == 1

@pytest.mark.asyncio
async def test_candle_intervals_are_distinct_rows(tmp_path):
    service = PersistenceService(str(tmp_path / "market.db"))
    await service.init_db()
    midnight = datetime(2025, 1, 1, tzinfo=UTC)
    await service.upsert_candles([
        Candle(interval="1h", item_id=1, open=1, high=2, low=1, close=2, timestamp=midnight),
        Candle(interval="1d", item_id=1, open=1, high=3, low=1, close=3, timestamp=midnight),
    ])
    hourly = await service.get_candles_between("1h", midnight, datetime(2025, 1, 2, tzinfo=UTC))
    daily = await service.get_candles_between("1d", midnight, datetime(2025, 1, 2, tzinfo=UTC))
    assert len(hourly) == 1 and hourly[0].high == 2
    assert len(daily) == 1 and daily[0].high == 3
