"""SOL/USD price oracle backed by the CoinGecko simple price endpoint."""

import math
from typing import Optional, Tuple

import httpx

from aoc.core.exceptions.base import PriceUnavailableError
from aoc.core.http_client import create_client
from aoc.core.logger.logger import get_logger
from aoc.infra.config.settings import get_settings

logger = get_logger(__name__)


def sol_amount_for(usd_amount: float, sol_price: float) -> float:
    """Convert a USD amount into SOL at the given price."""
    for value in (usd_amount, sol_price):
        if value is None or not math.isfinite(value) or value <= 0:
            raise ValueError("USD amount and SOL price must be positive numbers")
    return usd_amount / sol_price


class PriceOracle:
    """
    Fetches the current SOL/USD price. Every call is a fresh network round trip.

    Two policies are exposed and must not be mixed:
    - get_current_price() raises PriceUnavailableError on any failure. Use it
      for every amount that is later checked on-chain.
    - get_price_estimate() falls back to a constant. UI estimates only.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        fallback_price: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.url = url or settings.PRICE_FEED_URL
        self.fallback_price = fallback_price if fallback_price is not None else settings.SOL_PRICE_FALLBACK_USD
        self.client = client or create_client("price_feed")

    async def get_current_price(self) -> float:
        """Return the current SOL price in USD or raise PriceUnavailableError."""
        try:
            response = await self.client.get(self.url)
        except httpx.HTTPError as e:
            logger.error(
                "SOL price request failed",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            raise PriceUnavailableError() from e

        if response.status_code != 200:
            logger.error(
                "SOL price feed returned an error status",
                extra={"status_code": response.status_code}
            )
            raise PriceUnavailableError()

        try:
            price = response.json()["solana"]["usd"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("SOL price feed returned malformed data", extra={"error": str(e)})
            raise PriceUnavailableError() from e

        if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            logger.error("SOL price feed returned an invalid price", extra={"price": price})
            raise PriceUnavailableError()

        logger.debug("Fetched SOL price", extra={"sol_price": price})
        return float(price)

    async def get_price_estimate(self) -> Tuple[float, bool]:
        """
        Return (price, fallback_used). Never raises for feed failures.
        """
        try:
            return await self.get_current_price(), False
        except PriceUnavailableError:
            logger.warning(
                "Using fallback SOL price for estimate",
                extra={"fallback_price": self.fallback_price}
            )
            return self.fallback_price, True

    async def aclose(self) -> None:
        await self.client.aclose()
