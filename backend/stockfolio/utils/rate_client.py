import os
from typing import Optional

import httpx

from stockfolio.models.portfolio import ExchangeRateSet
from stockfolio.services.errors import UpstreamUnavailable
from stockfolio.utils.logger import setup_logger

logger = setup_logger(__name__)


class RateClient:
    """Client for the exchange-rate endpoint. One attempt per call, no retries."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or os.getenv("EXCHANGE_RATE_API_URL", "http://localhost:3000/api/getExchangeRates")
        self.timeout = timeout if timeout is not None else float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "8"))
        self.transport = transport

    async def fetch_rates(self) -> ExchangeRateSet:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.base_url)
        except httpx.HTTPError as e:
            logger.error(f"Exchange rate endpoint unreachable: {str(e)}")
            raise UpstreamUnavailable("Exchange rate fetch failed") from e

        if response.status_code != 200:
            logger.warning(f"Exchange rate endpoint returned status {response.status_code}")
            raise UpstreamUnavailable("Exchange rate fetch failed")

        try:
            data = response.json()
            rates = ExchangeRateSet(INR=data["INR"], EUR=data["EUR"], KRW=data["KRW"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed exchange rate payload: {str(e)}")
            raise UpstreamUnavailable("Exchange rate fetch failed") from e

        logger.info(f"Loaded exchange rates INR={rates.INR} EUR={rates.EUR} KRW={rates.KRW}")
        return rates


def get_rate_client() -> RateClient:
    """Get rate client instance."""
    return RateClient()
