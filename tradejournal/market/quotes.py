from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
from aiolimiter import AsyncLimiter

from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import MarketDataError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Quote:
    key: str
    price: float
    change_percent: Optional[float] = None


class MarketDataProvider:
    """REST quote fetchers. Each provider has its own rate limiter."""

    def __init__(self) -> None:
        self._settings = get_settings()
        self._session: Optional[aiohttp.ClientSession] = None
        self._coingecko_limiter = AsyncLimiter(10, 60)
        self._twelve_data_limiter = AsyncLimiter(8, 60)
        self._finnhub_limiter = AsyncLimiter(30, 1)

    @property
    def has_twelve_data(self) -> bool:
        return bool(self._settings.twelve_data_api_key)

    @property
    def has_finnhub(self) -> bool:
        return bool(self._settings.finnhub_api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._settings.market_timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, provider: str, url: str, params: dict[str, Any],
                        limiter: AsyncLimiter) -> Any:
        try:
            async with limiter:
                session = await self._get_session()
                async with session.get(url, params=params) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise MarketDataError(f"{provider} HTTP {response.status}: {text[:200]}")
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MarketDataError(f"{provider} request failed: {e}") from e

    async def crypto_quotes(self, ids: list[str]) -> list[Quote]:
        """CoinGecko simple price in USD with 24h change."""
        if not ids:
            return []
        data = await self._get_json(
            "coingecko",
            f"{self._settings.coingecko_base_url}/simple/price",
            {"ids": ",".join(ids), "vs_currencies": "usd", "include_24hr_change": "true"},
            self._coingecko_limiter,
        )
        quotes = []
        for coin_id, values in (data or {}).items():
            if not isinstance(values, dict) or values.get("usd") is None:
                continue
            quotes.append(Quote(coin_id, float(values["usd"]), values.get("usd_24h_change")))
        return quotes

    async def twelve_data_prices(self, symbols: list[str]) -> list[Quote]:
        """Batch price lookup. Keys of the result are the requested symbols."""
        if not symbols or not self.has_twelve_data:
            return []
        data = await self._get_json(
            "twelve_data",
            f"{self._settings.twelve_data_base_url}/price",
            {"symbol": ",".join(symbols), "apikey": self._settings.twelve_data_api_key},
            self._twelve_data_limiter,
        )
        if isinstance(data, dict) and data.get("status") == "error":
            raise MarketDataError(f"twelve_data: {data.get('message', 'unknown error')}")
        # A single-symbol request returns the price object unwrapped
        if isinstance(data, dict) and "price" in data and len(symbols) == 1:
            data = {symbols[0]: data}

        quotes = []
        for symbol in symbols:
            entry = (data or {}).get(symbol)
            if isinstance(entry, dict) and entry.get("price"):
                quotes.append(Quote(symbol, float(entry["price"])))
        return quotes

    async def finnhub_quote(self, symbol: str) -> Optional[Quote]:
        if not self.has_finnhub:
            return None
        data = await self._get_json(
            "finnhub",
            f"{self._settings.finnhub_base_url}/quote",
            {"symbol": symbol, "token": self._settings.finnhub_api_key},
            self._finnhub_limiter,
        )
        price = (data or {}).get("c")
        if not price:
            return None
        return Quote(symbol, float(price), data.get("dp"))
