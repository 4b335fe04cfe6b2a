import asyncio
from datetime import datetime
from typing import Optional

from market_tracker.connectors.bconomy_rest import BconomyREST
from market_tracker.core.catalog import Item, ItemCatalog
from market_tracker.core.errors import FetchError, ParseError
from market_tracker.core.logger import logger
from market_tracker.core.models import LiveStats
from market_tracker.core.persistence import PersistenceService
from market_tracker.core.timeutils import utcnow

class StatsWriter:
    """
    Refreshes the live stats of one catalog batch.
    Whether a write opens a new UTC day is decided in the upsert itself by
    comparing its date with the stored row's updated_at.
    """

    def __init__(
        self,
        persistence: PersistenceService,
        rest: BconomyREST,
        catalog: ItemCatalog,
        batch_count: int = 2,
        concurrency: int = 50,
    ):
        self.persistence = persistence
        self.rest = rest
        self.catalog = catalog
        self.batch_count = batch_count
        self.concurrency = concurrency

    async def run(self, batch_index: int, now: Optional[datetime] = None) -> int:
        items = self.catalog.batch(batch_index, self.batch_count)
        now = now or utcnow()
        logger.info(f"Stats writer started for batch {batch_index} ({len(items)} items)",
                    extra={"job": "stats", "batch": batch_index})

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(item: Item) -> bool:
            async with semaphore:
                return await self.refresh_item(item, now)

        results = await asyncio.gather(*(bounded(item) for item in items))
        refreshed = sum(results)
        logger.info(f"Stats writer finished batch {batch_index}: {refreshed} refreshed, {len(items) - refreshed} skipped",
                    extra={"job": "stats", "batch": batch_index})
        return refreshed

    async def refresh_item(self, item: Item, now: datetime) -> bool:
        try:
            listings = await self.rest.get_market_listings(item.id)
        except (FetchError, ParseError) as e:
            # Stats stay stale until the next successful run
            logger.warning(f"Skipping item {item.id}: {e}", extra={"job": "stats", "item_id": item.id})
            return False

        supply = sum(l.amount for l in listings)
        if listings:
            price = min(l.price for l in listings)
        else:
            price = await self.persistence.get_latest_price(item.id)
            if price is None:
                logger.info(f"No listings or price history for item {item.id}",
                            extra={"job": "stats", "item_id": item.id})
                return False

        await self.persistence.upsert_live_stats(LiveStats(
            item_id=item.id,
            last_known_price=price,
            opening_price=price,
            highest_price_today=price,
            lowest_price_today=price,
            supply=supply,
            updated_at=now,
        ))
        logger.debug(f"Live stats refreshed for item {item.id}", extra={"job": "stats", "item_id": item.id})
        return True
