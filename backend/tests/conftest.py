import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest

from stockfolio.models.user import User
from stockfolio.services.holding_storage import InMemoryHoldingStore
from stockfolio.services.portfolio import PortfolioController, SessionContext
from stockfolio.utils.price_client import PriceClient
from stockfolio.utils.rate_client import RateClient

PRICE_URL = "http://prices.test/api/getStockPrice"
RATE_URL = "http://rates.test/api/getExchangeRates"


class FakeUpstream:
    """Stands in for the price lookup and exchange-rate endpoints."""

    def __init__(self):
        self.prices = {"AAPL": 190.0, "MSFT": 410.0, "BRK.B": 420.5}
        self.failing = {"BADTICKER"}
        self.rates = {"USD": 1, "INR": 83, "EUR": 0.92, "KRW": 1300}
        self.rates_status = 200
        self.price_calls = []
        self.rate_calls = 0
        self.gate: Optional[asyncio.Event] = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "rates.test":
            self.rate_calls += 1
            if self.rates_status != 200:
                return httpx.Response(self.rates_status, json={"error": "Exchange rate fetch failed"})
            return httpx.Response(200, json=self.rates)

        ticker = request.url.params.get("ticker")
        self.price_calls.append(ticker)
        if self.gate is not None:
            await self.gate.wait()
        if ticker in self.failing:
            return httpx.Response(500, json={"error": "Yahoo Finance API returned status 500"})
        if ticker not in self.prices:
            return httpx.Response(404, json={"error": "Invalid ticker symbol or no data available"})
        return httpx.Response(200, json={
            "ticker": ticker,
            "price": self.prices[ticker],
            "currency": "USD",
            "timestamp": "2026-10-19T12:00:00Z",
        })

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def price_client(upstream):
    return PriceClient(base_url=PRICE_URL, timeout=1, transport=upstream.transport())


@pytest.fixture
def rate_client(upstream):
    return RateClient(base_url=RATE_URL, timeout=1, transport=upstream.transport())


@pytest.fixture
def store():
    return InMemoryHoldingStore()


@pytest.fixture
def user():
    return User(id="user-1", email="ada@example.com", full_name="Ada", created_at=datetime.now(timezone.utc))


@pytest.fixture
def session(user):
    return SessionContext(user=user)


@pytest.fixture
def controller(session, store, price_client, rate_client):
    return PortfolioController(session, store, price_client, rate_client)
