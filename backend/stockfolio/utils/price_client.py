import asyncio
import math
import os
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

import httpx
from pydantic import ValidationError as SchemaError

from stockfolio.models.portfolio import PriceFetchError, PriceQuote
from stockfolio.services.errors import InvalidTicker, NoData, PortfolioError, UpstreamUnavailable
from stockfolio.utils.logger import setup_logger

logger = setup_logger(__name__)

MAX_TICKER_LENGTH = 10
_TICKER_STRIP = re.compile(r"[^a-zA-Z0-9.]")


def sanitize_ticker(raw: Optional[str]) -> str:
    """Keep only alphanumerics and dots, uppercased."""
    ticker = _TICKER_STRIP.sub("", raw or "").upper()
    if not ticker:
        raise InvalidTicker("Invalid ticker symbol")
    if len(ticker) > MAX_TICKER_LENGTH:
        raise InvalidTicker(f"Ticker symbol must be at most {MAX_TICKER_LENGTH} characters")
    return ticker


class PriceClient:
    """Client for the price lookup endpoint (`GET ?ticker=SYM`)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or os.getenv("PRICE_API_URL", "http://localhost:3000/api/getStockPrice")
        self.timeout = timeout if timeout is not None else float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "8"))
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def fetch_price(self, ticker: str) -> PriceQuote:
        """Get the latest quote for one ticker."""
        symbol = sanitize_ticker(ticker)
        async with self._client() as client:
            return await self._fetch(client, symbol)

    async def fetch_prices(self, tickers: Iterable[str]) -> Dict[str, Union[PriceQuote, PriceFetchError]]:
        """Fetch every distinct ticker concurrently. Failures are returned per ticker, never raised."""
        symbols: List[str] = []
        for ticker in tickers:
            if ticker not in symbols:
                symbols.append(ticker)
        if not symbols:
            return {}

        async with self._client() as client:

            async def fetch_one(ticker: str) -> Union[PriceQuote, PriceFetchError]:
                try:
                    return await self._fetch(client, sanitize_ticker(ticker))
                except PortfolioError as e:
                    return PriceFetchError(ticker=ticker, message=e.message)

            results = await asyncio.gather(*[fetch_one(ticker) for ticker in symbols])

        failed = sum(1 for r in results if isinstance(r, PriceFetchError))
        logger.info(f"Fetched prices for {len(symbols)} tickers ({failed} failed)")
        return dict(zip(symbols, results))

    async def _fetch(self, client: httpx.AsyncClient, symbol: str) -> PriceQuote:
        try:
            response = await client.get(self.base_url, params={"ticker": symbol})
        except httpx.HTTPError as e:
            logger.error(f"Price endpoint unreachable for {symbol}: {str(e)}")
            raise UpstreamUnavailable("Failed to fetch stock price") from e

        data = self._safe_json(response)

        if response.status_code != 200:
            message = str(data.get("error") or f"Price lookup returned status {response.status_code}")
            logger.warning(f"Price lookup failed for {symbol}: {response.status_code} {message}")
            if response.status_code == 400:
                raise InvalidTicker(message)
            if response.status_code == 404:
                raise NoData(message)
            raise UpstreamUnavailable(message)

        price = data.get("price")
        if (
            isinstance(price, bool)
            or not isinstance(price, (int, float))
            or not math.isfinite(price)
            or price <= 0
        ):
            raise NoData(f"No price data available for {symbol}")

        try:
            return PriceQuote(
                ticker=data.get("ticker") or symbol,
                price=float(price),
                currency=data.get("currency") or "USD",
                timestamp=data.get("timestamp") or datetime.now(timezone.utc),
            )
        except SchemaError as e:
            logger.warning(f"Malformed price payload for {symbol}: {str(e)}")
            raise UpstreamUnavailable(f"Malformed price data for {symbol}") from e

    def _safe_json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


def get_price_client() -> PriceClient:
    """Get price client instance."""
    return PriceClient()
