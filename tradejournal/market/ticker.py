from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Optional

import websockets

from tradejournal.market.quotes import MarketDataProvider, Quote
from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import MarketDataError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)

FLASH_THRESHOLD = 0.0001
MAX_RECONNECT_DELAY = 30.0


@dataclass
class TickerItem:
    id: str
    symbol: str
    name: str
    source: str                   # crypto / forex / stock / index / commodity
    provider_symbol: str = ""     # symbol as the upstream provider spells it
    price: float = 0.0
    previous_price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    is_up: bool = True
    flash: Optional[str] = None   # "up" / "down" on the latest tick
    last_updated: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Binance stream symbol -> CoinGecko id
BINANCE_SYMBOLS: dict[str, str] = {
    "btcusdt": "bitcoin",
    "ethusdt": "ethereum",
    "solusdt": "solana",
    "bnbusdt": "binancecoin",
    "xrpusdt": "ripple",
    "dogeusdt": "dogecoin",
    "adausdt": "cardano",
    "linkusdt": "chainlink",
    "avaxusdt": "avalanche-2",
}


def default_watchlist() -> list[TickerItem]:
    items = [
        TickerItem(coin_id, pair[:-4].upper() + "/USD", coin_id.split("-")[0].title(), "crypto", pair)
        for pair, coin_id in BINANCE_SYMBOLS.items()
    ]
    items += [
        TickerItem("spy", "SPY", "S&P 500", "index", "SPY"),
        TickerItem("qqq", "QQQ", "Nasdaq 100", "index", "QQQ"),
        TickerItem("dia", "DIA", "Dow Jones", "index", "DIA"),
        TickerItem("nvda", "NVDA", "NVIDIA", "stock", "NVDA"),
        TickerItem("tsla", "TSLA", "Tesla", "stock", "TSLA"),
        TickerItem("aapl", "AAPL", "Apple", "stock", "AAPL"),
        TickerItem("msft", "MSFT", "Microsoft", "stock", "MSFT"),
    ]
    items += [
        TickerItem("eurusd", "EUR/USD", "Euro/Dollar", "forex", "EUR/USD"),
        TickerItem("gbpusd", "GBP/USD", "Pound/Dollar", "forex", "GBP/USD"),
        TickerItem("usdjpy", "USD/JPY", "Dollar/Yen", "forex", "USD/JPY"),
        TickerItem("audusd", "AUD/USD", "Aussie/Dollar", "forex", "AUD/USD"),
        TickerItem("xauusd", "XAU/USD", "Gold", "commodity", "XAU/USD"),
        TickerItem("xagusd", "XAG/USD", "Silver", "commodity", "XAG/USD"),
    ]
    return items


class MarketTicker:
    """Quote cache fed by REST polling loops and the Binance combined stream."""

    def __init__(self, provider: Optional[MarketDataProvider] = None,
                 items: Optional[list[TickerItem]] = None) -> None:
        self._settings = get_settings()
        self._provider = provider or MarketDataProvider()
        self._items: dict[str, TickerItem] = {i.id: i for i in (items or default_watchlist())}
        self._status: dict[str, bool] = {
            "coingecko": False, "twelve_data": False, "finnhub": False, "binance": False,
        }
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self._reconnect_attempts = 0

    @property
    def running(self) -> bool:
        return self._running

    def _find(self, key: str) -> Optional[TickerItem]:
        item = self._items.get(key)
        if item:
            return item
        key = key.lower()
        for candidate in self._items.values():
            if candidate.symbol.lower() == key or candidate.provider_symbol.lower() == key:
                return candidate
        return None

    def update_price(self, key: str, price: float, change_percent: Optional[float] = None) -> Optional[TickerItem]:
        """Apply a new price to the item matched by id or symbol."""
        if not price or price <= 0:
            return None
        item = self._find(key)
        if item is None:
            return None

        previous = item.price or price
        if change_percent is None:
            if item.change_percent:
                change_percent = item.change_percent
            else:
                change_percent = (price - previous) / previous * 100

        item.flash = None
        if previous > 0 and abs(price - previous) / previous > FLASH_THRESHOLD:
            item.flash = "up" if price >= previous else "down"

        item.previous_price = previous
        item.price = price
        item.change = price - previous
        item.change_percent = change_percent
        item.is_up = change_percent >= 0
        item.last_updated = time.time()
        return item

    def snapshot(self) -> dict[str, Any]:
        return {
            "items": [i.to_dict() for i in self._items.values()],
            "status": dict(self._status),
            "running": self._running,
        }

    def _items_of(self, *sources: str) -> list[TickerItem]:
        return [i for i in self._items.values() if i.source in sources]

    # ── REST polling ─────────────────────────────────────────────

    async def _guarded(self, name: str, fetch: Callable[[], Awaitable[list[Quote]]]) -> int:
        """Run one provider fetch; a failure only marks that provider down."""
        try:
            quotes = await fetch()
        except MarketDataError as e:
            self._status[name] = False
            logger.warning("market_provider_failed", provider=name, error=e.message)
            return 0
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            self._status[name] = False
            logger.warning("market_provider_bad_payload", provider=name, error=str(e))
            return 0
        self._status[name] = True
        for q in quotes:
            self.update_price(q.key, q.price, q.change_percent)
        return len(quotes)

    async def poll_coingecko(self) -> int:
        # CoinGecko only seeds prices the stream has not delivered yet
        ids = [i.id for i in self._items_of("crypto")
               if not (self._status["binance"] and i.price)]
        return await self._guarded("coingecko", lambda: self._provider.crypto_quotes(ids))

    async def poll_twelve_data(self) -> int:
        if not self._provider.has_twelve_data:
            return 0
        symbols = [i.provider_symbol for i in self._items_of("forex", "commodity")]
        return await self._guarded("twelve_data", lambda: self._provider.twelve_data_prices(symbols))

    async def poll_finnhub(self) -> int:
        if not self._provider.has_finnhub:
            return 0

        async def fetch_all() -> list[Quote]:
            quotes = []
            for item in self._items_of("stock", "index"):
                q = await self._provider.finnhub_quote(item.provider_symbol)
                if q:
                    quotes.append(q)
            return quotes

        return await self._guarded("finnhub", fetch_all)

    async def poll_once(self) -> dict[str, int]:
        results = await asyncio.gather(self.poll_coingecko(), self.poll_twelve_data(), self.poll_finnhub())
        return dict(zip(("coingecko", "twelve_data", "finnhub"), results))

    async def _poll_loop(self, name: str, poll: Callable[[], Awaitable[int]], interval: float) -> None:
        while self._running:
            await poll()
            await asyncio.sleep(interval)
        logger.info("market_poll_stopped", provider=name)

    # ── Binance stream ───────────────────────────────────────────

    def handle_stream_message(self, message: str) -> Optional[TickerItem]:
        """Combined-stream payload: {"stream": ..., "data": {"s", "c", "P"}}."""
        try:
            data = json.loads(message).get("data") or {}
            coin_id = BINANCE_SYMBOLS.get(str(data.get("s", "")).lower())
            if not coin_id:
                return None
            return self.update_price(coin_id, float(data["c"]), float(data["P"]))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.debug("stream_message_ignored", error=str(e))
            return None

    def _stream_url(self) -> str:
        streams = "/".join(f"{symbol}@ticker" for symbol in BINANCE_SYMBOLS)
        return f"{self._settings.binance_ws_url}?streams={streams}"

    async def _stream_loop(self) -> None:
        max_attempts = self._settings.ws_max_reconnect_attempts
        while self._running and self._reconnect_attempts <= max_attempts:
            try:
                async with websockets.connect(self._stream_url(), ping_interval=20, ping_timeout=10) as ws:
                    self._status["binance"] = True
                    self._reconnect_attempts = 0
                    logger.info("binance_stream_connected")
                    async for message in ws:
                        if isinstance(message, str):
                            self.handle_stream_message(message)
            except websockets.ConnectionClosed as e:
                logger.warning("binance_stream_closed", code=e.code, reason=e.reason)
            except (OSError, websockets.WebSocketException) as e:
                logger.error("binance_stream_error", error=str(e))

            self._status["binance"] = False
            if not self._running:
                break
            if self._reconnect_attempts >= max_attempts:
                logger.error("binance_stream_gave_up", attempts=self._reconnect_attempts)
                break
            delay = min(self._settings.ws_reconnect_delay * (2 ** self._reconnect_attempts), MAX_RECONNECT_DELAY)
            self._reconnect_attempts += 1
            logger.info("binance_stream_reconnecting", attempt=self._reconnect_attempts, delay=delay)
            await asyncio.sleep(delay)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        s = self._settings
        self._tasks = [
            asyncio.create_task(self._poll_loop("coingecko", self.poll_coingecko, s.coingecko_interval)),
            asyncio.create_task(self._poll_loop("twelve_data", self.poll_twelve_data, s.twelve_data_interval)),
            asyncio.create_task(self._poll_loop("finnhub", self.poll_finnhub, s.finnhub_interval)),
        ]
        if s.binance_stream_enabled:
            self._tasks.append(asyncio.create_task(self._stream_loop()))
        logger.info("market_ticker_started", tasks=len(self._tasks))

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for key in self._status:
            self._status[key] = False
        await self._provider.close()
        logger.info("market_ticker_stopped")
