"""Live price from the Binance futures bookTicker stream.

Keeps only the latest best bid. The connection is re-established after
``reconnect_seconds`` whenever it drops; until the first message arrives the
price is ``None`` ("no data yet", not an error).
"""

import asyncio
import json
import logging

import websockets

from hedgebot.engine.state import parse_price

logger = logging.getLogger(__name__)


class PriceFeed:
    def __init__(self, symbol: str, ws_url: str, reconnect_seconds: float = 5.0):
        self.symbol = symbol.upper()
        self.url = f"{ws_url.rstrip('/')}/{self.symbol.lower()}@bookTicker"
        self.reconnect_seconds = reconnect_seconds
        self._price: float | None = None
        self._first_price = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_current_price(self) -> float | None:
        return self._price

    def handle_message(self, raw: str | bytes):
        """Update the price from one bookTicker payload; malformed payloads are ignored."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring non-JSON price message: {raw!r}")
            return
        if not isinstance(data, dict):
            return
        # Combined-stream payloads wrap the ticker in "data"
        if isinstance(data.get("data"), dict):
            data = data["data"]
        price = parse_price(data.get("b"))
        if price is None:
            return
        self._price = price
        self._first_price.set()

    async def wait_for_first_price(self, timeout: float) -> float:
        """Block until a price is known. Raises asyncio.TimeoutError."""
        if self._price is None:
            await asyncio.wait_for(self._first_price.wait(), timeout=timeout)
        return self._price

    def start(self):
        if self.is_running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"price-feed-{self.symbol}")
        logger.info(f"Price feed started for {self.symbol}")

    async def stop(self):
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"Price feed stopped for {self.symbol}")

    async def _run(self):
        while self._running:
            try:
                async with websockets.connect(self.url, ping_interval=20, ping_timeout=10) as ws:
                    logger.info(f"Price feed connected: {self.url}")
                    async for message in ws:
                        self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except websockets.exceptions.ConnectionClosed as e:
                logger.warning(f"Price feed closed ({e}), reconnecting in {self.reconnect_seconds}s")
            except Exception as e:
                logger.warning(f"Price feed error: {e}, reconnecting in {self.reconnect_seconds}s")
            if self._running:
                await asyncio.sleep(self.reconnect_seconds)
