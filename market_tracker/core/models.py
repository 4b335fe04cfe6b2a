import math
from pydantic import BaseModel, BeforeValidator, Field, StrictInt
from datetime import datetime
from typing import Annotated, Any, Dict, Optional

from market_tracker.core.timeutils import utcnow

def check_price(v):
    # bool is an int subclass; a flag is never a price
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValueError(f"price must be numeric, got {type(v).__name__}")
    if not math.isfinite(v) or v < 0:
        raise ValueError(f"price must be a finite non-negative number, got {v}")
    return v

Price = Annotated[float, BeforeValidator(check_price)]

class PriceTick(BaseModel):
    """One raw price observation for one item"""
    item_id: int
    price: Price
    timestamp: datetime = Field(default_factory=utcnow)

class Candle(BaseModel):
    """OHLC aggregate of one item over one interval bucket"""
    interval: str
    item_id: int
    open: float
    high: float
    low: float
    close: float
    timestamp: datetime  # bucket start, UTC

class LiveStats(BaseModel):
    """Current UTC trading day snapshot for one item"""
    item_id: int
    last_known_price: float
    opening_price: float
    highest_price_today: float
    lowest_price_today: float
    supply: int
    updated_at: Optional[datetime] = None

class MarketListing(BaseModel):
    """A single sell listing as returned by the marketListings endpoint"""
    id: StrictInt
    price: Price
    amount: StrictInt = Field(ge=0)

class MarketPreview(BaseModel):
    """Bulk price listing: `data` maps `item<ID>` keys to raw price values"""
    lastUpdated: Optional[StrictInt] = None
    data: Dict[str, Any]
