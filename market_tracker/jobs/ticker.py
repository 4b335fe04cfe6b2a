from datetime import datetime
from typing import List, Optional, Tuple

from market_tracker.connectors.bconomy_rest import BconomyREST
from market_tracker.core.catalog import ItemCatalog
from market_tracker.core.errors import FetchError, ParseError
from market_tracker.core.logger import logger
from market_tracker.core.models import PriceTick
from market_tracker.core.persistence import PersistenceService
from market_tracker.core.timeutils import from_epoch_ms, utcnow

class Ticker:
    """
    Appends one raw price observation per catalog item.
    Bulk mode makes a single marketPreview call; per-item mode prices each item
    by its cheapest open listing and stores it before fetching the next one.
    """

    def __init__(self, persistence: PersistenceService, rest: BconomyREST, catalog: ItemCatalog, use_bulk: bool = True):
        self.persistence = persistence
        self.rest = rest
        self.catalog = catalog
        self.use_bulk = use_bulk

    async def run(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        logger.info(f"Ticker started for {len(self.catalog)} items", extra={"job": "ticker"})

        if self.use_bulk:
            ticks = await self._collect_bulk(now)
            scraped, inserted = len(ticks), await self.persistence.insert_price_ticks(ticks)
        else:
            scraped, inserted = await self._store_per_item(now)

        logger.info(
            f"Ticker finished: {scraped} prices scraped, {inserted} inserted, {scraped - inserted} already stored",
            extra={"job": "ticker"},
        )
        return inserted

    async def _collect_bulk(self, now: datetime) -> List[PriceTick]:
        try:
            preview = await self.rest.get_market_preview()
        except (FetchError, ParseError) as e:
            # Nothing to fall back on for this cycle; the next scheduled run retries
            logger.error(f"Market preview unavailable: {e}", extra={"job": "ticker"})
            raise

        observed_at = from_epoch_ms(preview.lastUpdated) if preview.lastUpdated else now
        ticks = []
        for item in self.catalog:
            key = f"item{item.id}"
            if key not in preview.data:
                logger.debug(f"No price listed for item {item.id}", extra={"job": "ticker", "item_id": item.id})
                continue
            try:
                ticks.append(PriceTick(item_id=item.id, price=preview.data[key], timestamp=observed_at))
            except ValueError as e:
                # pydantic's ValidationError is a ValueError
                logger.warning(f"Unparseable price for item {item.id}: {preview.data[key]!r} ({e.__class__.__name__})",
                               extra={"job": "ticker", "item_id": item.id})
        return ticks

    async def _store_per_item(self, now: datetime) -> Tuple[int, int]:
        # Each tick is committed on its own so a run killed at its timeout keeps what it fetched
        scraped = inserted = 0
        for item in self.catalog:
            try:
                listings = await self.rest.get_market_listings(item.id)
            except (FetchError, ParseError) as e:
                logger.warning(f"Skipping item {item.id}: {e}", extra={"job": "ticker", "item_id": item.id})
                continue
            if not listings:
                continue
            tick = PriceTick(item_id=item.id, price=min(l.price for l in listings), timestamp=now)
            scraped += 1
            inserted += await self.persistence.insert_price_ticks([tick])
        return scraped, inserted
