import pytest
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from market_tracker.core.catalog import ItemCatalog
from market_tracker.core.errors import FetchError, ParseError
from market_tracker.core.models import MarketListing, PriceTick
from market_tracker.core.persistence import PersistenceService
from market_tracker.jobs.stats_writer import StatsWriter

UTC = timezone.utc

async def make_service(tmp_path):
    service = PersistenceService(str(tmp_path / "market.db"))
    await service.init_db()
    return service

def make_rest(prices):
    """`prices` maps item id to a list of (price, amount) listings, or an exception"""
    async def listings(item_id):
        result = prices.get(item_id, [])
        if isinstance(result, Exception):
            raise result
        return [MarketListing(id=item_id, price=p, amount=a) for p, a in result]

    rest = MagicMock()
    rest.get_market_listings = AsyncMock(side_effect=listings)
    return rest

def make_writer(service, rest, size=4):
    return StatsWriter(service, rest, ItemCatalog.generate(size), batch_count=2, concurrency=2)

@pytest.mark.asyncio
async def test_first_write_opens_the_day(tmp_path):
    service = await make_service(tmp_path)
    writer = make_writer(service, make_rest({0: [(120, 3), (100, 2)], 1: [(7, 10)]}))

    assert await writer.run(0, now=datetime(2025, 1, 1, 8, 0, tzinfo=UTC)) == 2

    stats = await service.get_live_stats(0)
    assert stats.last_known_price == stats.opening_price == 100
    assert stats.highest_price_today == stats.lowest_price_today == 100
    assert stats.supply == 5
    assert stats.updated_at == datetime(2025, 1, 1, 8, 0, tzinfo=UTC)

@pytest.mark.asyncio
async def test_same_day_refines_high_and_low(tmp_path):
    service = await make_service(tmp_path)

    await make_writer(service, make_rest({0: [(100, 5)]})).run(0, now=datetime(2025, 1, 1, 8, 0, tzinfo=UTC))
    await make_writer(service, make_rest({0: [(140, 4)]})).run(0, now=datetime(2025, 1, 1, 8, 30, tzinfo=UTC))
    await make_writer(service, make_rest({0: [(90, 6)]})).run(0, now=datetime(2025, 1, 1, 9, 0, tzinfo=UTC))
    await make_writer(service, make_rest({0: [(110, 1)]})).run(0, now=datetime(2025, 1, 1, 9, 30, tzinfo=UTC))

    stats = await service.get_live_stats(0)
    assert stats.opening_price == 100
    assert stats.highest_price_today == 140
    assert stats.lowest_price_today == 90
    assert stats.last_known_price == 110
    assert stats.supply == 1

@pytest.mark.asyncio
async def test_first_write_after_utc_midnight_resets(tmp_path):
    service = await make_service(tmp_path)

    await make_writer(service, make_rest({0: [(500, 1)]})).run(0, now=datetime(2025, 1, 1, 12, 0, tzinfo=UTC))
    await make_writer(service, make_rest({0: [(10, 1)]})).run(0, now=datetime(2025, 1, 1, 23, 30, tzinfo=UTC))
    await make_writer(service, make_rest({0: [(200, 3)]})).run(0, now=datetime(2025, 1, 2, 0, 0, 30, tzinfo=UTC))

    stats = await service.get_live_stats(0)
    assert stats.opening_price == 200
    assert stats.highest_price_today == 200
    assert stats.lowest_price_today == 200
    assert stats.last_known_price == 200
    assert stats.supply == 3

@pytest.mark.asyncio
async def test_late_write_from_previous_day_does_not_regress(tmp_path):
    service = await make_service(tmp_path)

    await make_writer(service, make_rest({0: [(200, 3)]})).run(0, now=datetime(2025, 1, 2, 0, 5, tzinfo=UTC))
    # An overlapping run that started before midnight lands afterwards
    await make_writer(service, make_rest({0: [(999, 1)]})).run(0, now=datetime(2025, 1, 1, 23, 59, tzinfo=UTC))

    stats = await service.get_live_stats(0)
    assert (stats.opening_price, stats.highest_price_today, stats.lowest_price_today) == (200, 200, 200)
    assert stats.last_known_price == 200
    assert stats.supply == 3

@pytest.mark.asyncio
async def test_failed_item_is_skipped(tmp_path):
    service = await make_service(tmp_path)
    rest = make_rest({
        0: FetchError("timeout", "marketListings:0"),
        1: [(30, 2)],
        2: ParseError("bad shape", "marketListings:2"),
        3: [(40, 1)],
    })
    writer = make_writer(service, rest)

    assert await writer.run(0, now=datetime(2025, 1, 1, 8, tzinfo=UTC)) == 1
    assert await writer.run(1, now=datetime(2025, 1, 1, 8, tzinfo=UTC)) == 1
    assert await service.get_live_stats(0) is None
    assert (await service.get_live_stats(1)).last_known_price == 30
    assert await service.get_live_stats(2) is None
    assert (await service.get_live_stats(3)).last_known_price == 40

@pytest.mark.asyncio
async def test_no_listings_falls_back_to_last_tick(tmp_path):
    service = await make_service(tmp_path)
    await service.insert_price_ticks([PriceTick(item_id=1, price=77, timestamp=datetime(2025, 1, 1, 7, 55, tzinfo=UTC))])
    writer = make_writer(service, make_rest({}))

    # Item 0 has neither listings nor history, item 1 has history only
    assert await writer.run(0, now=datetime(2025, 1, 1, 8, tzinfo=UTC)) == 1
    assert await service.get_live_stats(0) is None
    stats = await service.get_live_stats(1)
    assert stats.last_known_price == 77
    assert stats.supply == 0

@pytest.mark.asyncio
async def test_batch_only_touches_its_items(tmp_path):
    service = await make_service(tmp_path)
    rest = make_rest({i: [(10 + i, 1)] for i in range(4)})
    writer = make_writer(service, rest)

    await writer.run(1, now=datetime(2025, 1, 1, 8, tzinfo=UTC))
    called = sorted(call.args[0] for call in rest.get_market_listings.call_args_list)
    assert called == [2, 3]

    with pytest.raises(ValueError):
        await writer.run(2)

@pytest.mark.asyncio
async def test_run_killed_mid_batch_keeps_refreshed_items(tmp_path):
    service = await make_service(tmp_path)

    async def listings(item_id):
        if item_id == 1:
            await asyncio.Event().wait()
        return [MarketListing(id=item_id, price=25, amount=4)]

    rest = MagicMock()
    rest.get_market_listings = AsyncMock(side_effect=listings)
    writer = make_writer(service, rest)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(writer.run(0, now=datetime(2025, 1, 1, 8, tzinfo=UTC)), timeout=0.2)

    stats = await service.get_live_stats(0)
    assert stats.last_known_price == 25
    assert stats.supply == 4
    assert await service.get_live_stats(1) is None
