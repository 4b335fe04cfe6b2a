import json
from typing import Any, Dict, List, Optional
import httpx
from pydantic import ValidationError
from market_tracker.config import settings
from market_tracker.core.errors import FetchError, ParseError
from market_tracker.core.logger import logger
from market_tracker.core.models import MarketListing, MarketPreview
from market_tracker.core.rate_limiter import RateLimiter

class BconomyREST:
    def __init__(
        self,
        limiter: RateLimiter,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.limiter = limiter
        self.api_key = api_key if api_key is not None else settings.BCONOMY_API_KEY
        self.url = base_url or settings.BCONOMY_API_URL
        self.client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    async def fetch(self, payload: Dict[str, Any]) -> Any:
        """
        POST one request to the data endpoint, paced by the limiter.
        Returns the decoded JSON body. Does not retry.
        """
        target = payload.get("type", "unknown")
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
        }

        await self.limiter.acquire()
        try:
            response = await self.client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {target} failed: {e!r}", target) from e

        if response.is_error:
            # Body may echo request details; keep it short and never log headers
            raise FetchError(
                f"Bconomy API Error {response.status_code} for {target}: {response.text[:200]}",
                target,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ParseError(f"Response for {target} is not JSON", target) from e

    async def get_market_preview(self) -> MarketPreview:
        """Current price of every listed item in one call"""
        body = await self.fetch({"type": "marketPreview"})
        try:
            return MarketPreview.model_validate(body)
        except ValidationError as e:
            raise ParseError(f"Unexpected marketPreview shape: {e.error_count()} errors", "marketPreview") from e

    async def get_market_listings(self, item_id: int) -> List[MarketListing]:
        """Open sell listings for one item"""
        target = f"marketListings:{item_id}"
        logger.debug(f"Getting market listings for item {item_id}", extra={"item_id": item_id})
        body = await self.fetch({"type": "marketListings", "itemId": item_id})
        if not isinstance(body, list):
            raise ParseError(f"Expected a list of listings, got {type(body).__name__}", target)
        try:
            return [MarketListing.model_validate(row) for row in body]
        except ValidationError as e:
            raise ParseError(f"Unexpected listing shape for item {item_id}: {e.error_count()} errors", target) from e
