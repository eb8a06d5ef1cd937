"""
USD price feed for native assets.

CoinGeckoPriceSource fetches a single price; PriceTicker keeps prices fresh on
a fixed interval in a background asyncio task that is cancelled on teardown.
A missing price is always None, never zero.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional

import requests

logger = logging.getLogger(__name__)

COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_REFRESH_INTERVAL = 30.0  # seconds

# Asset symbol -> CoinGecko id
COINGECKO_IDS = {
    "SOL": "solana",
    "BNB": "binancecoin",
}

UNAVAILABLE = "--"


class CoinGeckoPriceSource:
    """Fetches USD spot prices from the CoinGecko simple price endpoint."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_price(self, symbol: str) -> Optional[Decimal]:
        """
        Fetch the USD price of an asset.

        Args:
            symbol: Asset symbol (SOL, BNB)

        Returns:
            Price in USD, or None if the symbol is unknown or the request failed
        """
        coin_id = COINGECKO_IDS.get(symbol.upper())
        if coin_id is None:
            return None

        try:
            response = self.session.get(
                COINGECKO_PRICE_URL,
                params={"ids": coin_id, "vs_currencies": "usd"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            price = response.json().get(coin_id, {}).get("usd")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Failed to fetch %s price: %s", symbol, e)
            return None

        if isinstance(price, bool) or not isinstance(price, (int, float, str)):
            logger.warning("Invalid price data for %s", symbol)
            return None
        try:
            return Decimal(str(price))
        except InvalidOperation:
            logger.warning("Invalid price data for %s", symbol)
            return None


class PriceTicker:
    """
    Periodically refreshed price cache.

    Usage:
        async with PriceTicker(CoinGeckoPriceSource(), ["SOL"]) as ticker:
            ticker.format_usd(Decimal("0.5"), "SOL")
    """

    def __init__(
        self,
        source: CoinGeckoPriceSource,
        symbols: Iterable[str],
        interval: float = DEFAULT_REFRESH_INTERVAL,
    ):
        self.source = source
        self.symbols = [s.upper() for s in symbols]
        self.interval = interval
        self._prices: Dict[str, Decimal] = {}
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> None:
        """Fetch every tracked symbol once. Failed fetches keep the last known price."""
        for symbol in self.symbols:
            price = await asyncio.to_thread(self.source.fetch_price, symbol)
            if price is not None:
                self._prices[symbol] = price

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "PriceTicker":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def current_price(self, symbol: str) -> Optional[Decimal]:
        return self._prices.get(symbol.upper())

    def to_usd(self, amount: Decimal, symbol: str) -> Optional[Decimal]:
        price = self.current_price(symbol)
        if price is None:
            return None
        return amount * price

    def format_usd(self, amount: Decimal, symbol: str) -> str:
        """Format an amount as USD, or "--" when no price is known."""
        usd = self.to_usd(amount, symbol)
        if usd is None:
            return UNAVAILABLE
        return f"${usd.quantize(Decimal('0.01')):,.2f}"
