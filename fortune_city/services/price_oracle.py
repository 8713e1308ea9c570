"""
USD prices for deposit currencies.

SOL comes from CoinGecko and is cached; USDT is pegged at 1.0 and FORTUNE
uses the configured fallback price until it has a market.
"""

import asyncio
import time
from decimal import Decimal
from typing import Optional

import aiohttp
import structlog

from fortune_city.constants.tokens import CURRENCY_FORTUNE, CURRENCY_SOL, CURRENCY_USDT_SOL
from fortune_city.core.config import settings
from fortune_city.core.exceptions import ExternalServiceError, ValidationError
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)

USDT_PRICE_USD = Decimal("1")


class PriceOracle:
    """Service for fetching token prices in USD."""

    def __init__(self, base_url: Optional[str] = None, cache_duration: Optional[int] = None):
        self.base_url = base_url or settings.coingecko_api_url
        self.cache_duration = cache_duration if cache_duration is not None else settings.price_cache_seconds
        self._cached_sol_price: Optional[Decimal] = None
        self._cache_timestamp = 0.0
        self.logger = logger.bind(service="price_oracle")

    async def _fetch_sol_price(self) -> Optional[Decimal]:
        try:
            async with aiohttp.ClientSession() as session:
                url = f"{self.base_url}/simple/price"
                params = {"ids": "solana", "vs_currencies": "usd"}

                async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=10)) as response:
                    if response.status != 200:
                        self.logger.warning("CoinGecko returned an error", status=response.status)
                        return None
                    data = await response.json()
                    price = data.get("solana", {}).get("usd")
                    return to_decimal(price) if price else None

        except asyncio.TimeoutError:
            self.logger.warning("CoinGecko API timeout")
        except aiohttp.ClientError as e:
            self.logger.error("Error fetching SOL price", error=str(e))

        return None

    async def get_sol_price_usd(self, force_refresh: bool = False) -> Decimal:
        now = time.time()
        if (
            not force_refresh
            and self._cached_sol_price is not None
            and now - self._cache_timestamp < self.cache_duration
        ):
            return self._cached_sol_price

        price = await self._fetch_sol_price()
        if price is not None:
            self._cached_sol_price = price
            self._cache_timestamp = now
            self.logger.info("SOL price updated", price=str(price))
            return price

        # A stale price beats no price
        if self._cached_sol_price is not None:
            return self._cached_sol_price
        raise ExternalServiceError("SOL price is unavailable")

    async def refresh(self) -> Decimal:
        return await self.get_sol_price_usd(force_refresh=True)

    async def get_price_usd(self, currency: str) -> Decimal:
        if currency == CURRENCY_SOL:
            return await self.get_sol_price_usd()
        if currency == CURRENCY_USDT_SOL:
            return USDT_PRICE_USD
        if currency == CURRENCY_FORTUNE:
            return to_decimal(settings.fortune_fallback_price_usd)
        raise ValidationError(f"Unsupported currency: {currency}", {"currency": currency})

    async def get_rates(self) -> dict:
        return {
            CURRENCY_SOL: await self.get_sol_price_usd(),
            CURRENCY_USDT_SOL: USDT_PRICE_USD,
            CURRENCY_FORTUNE: to_decimal(settings.fortune_fallback_price_usd),
        }


_price_oracle: Optional[PriceOracle] = None


def get_price_oracle() -> PriceOracle:
    global _price_oracle
    if _price_oracle is None:
        _price_oracle = PriceOracle()
    return _price_oracle


def set_price_oracle(oracle: Optional[PriceOracle]) -> None:
    global _price_oracle
    _price_oracle = oracle
