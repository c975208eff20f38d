# backend/stockfolio/services/errors.py
from typing import Optional


class PortfolioError(Exception):
    """Base error for portfolio operations. `message` is safe to show to the user."""

    status_code = 400
    default_message = "Portfolio operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PortfolioError):
    status_code = 422
    default_message = "Please fill in all fields"


class InvalidTicker(PortfolioError):
    status_code = 400
    default_message = "Invalid ticker symbol"


class NoData(PortfolioError):
    status_code = 404
    default_message = "Price data not available for this ticker"


class UpstreamUnavailable(PortfolioError):
    status_code = 502
    default_message = "Upstream service unavailable"


class RatesNotReady(PortfolioError):
    status_code = 409
    default_message = "Exchange rates not loaded yet"


class NotAuthenticated(PortfolioError):
    status_code = 401
    default_message = "Not authenticated"


class HoldingNotFound(PortfolioError):
    status_code = 404
    default_message = "Holding not found"
