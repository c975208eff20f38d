# backend/stockfolio/models/portfolio.py
from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import List, Optional
from datetime import datetime
from enum import Enum

class Currency(str, Enum):
    USD = "USD"
    INR = "INR"
    EUR = "EUR"
    KRW = "KRW"

CURRENCY_SYMBOLS = {
    Currency.USD: "$",
    Currency.INR: "₹",
    Currency.EUR: "€",
    Currency.KRW: "₩",
}

class PriceStatus(str, Enum):
    PENDING = "pending"
    OK = "ok"
    FAILED = "failed"

class LoadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"

class PriceState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    PARTIALLY_FAILED = "partially_failed"

class RateState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"

class AddStockRequest(BaseModel):
    ticker: Optional[str] = None
    quantity: Optional[float] = None
    buy_price: Optional[float] = None
    currency: Currency = Currency.USD

class Holding(BaseModel):
    """One stock position. `buy_price` and `current_price` are always USD."""
    model_config = ConfigDict(frozen=True)

    id: str
    ticker: str
    quantity: float
    buy_price: float
    created_at: datetime
    current_price: Optional[float] = None
    price_status: PriceStatus = PriceStatus.PENDING
    price_error: Optional[str] = None

class PriceQuote(BaseModel):
    ticker: str
    price: float
    currency: str = "USD"
    timestamp: datetime

class PriceFetchError(BaseModel):
    ticker: str
    message: str

class ExchangeRateSet(BaseModel):
    """1 USD = rate units of each currency."""
    INR: float = Field(..., gt=0, allow_inf_nan=False)
    EUR: float = Field(..., gt=0, allow_inf_nan=False)
    KRW: float = Field(..., gt=0, allow_inf_nan=False)

    def rate_for(self, currency: Currency) -> float:
        if currency == Currency.USD:
            return 1.0
        return getattr(self, Currency(currency).value)

class HoldingValuation(BaseModel):
    holding: Holding
    invested: float
    current: Optional[float] = None
    profit_loss: Optional[float] = None
    percentage: Optional[float] = None

class PortfolioTotals(BaseModel):
    invested: float = 0.0
    current: float = 0.0
    profit_loss: float = 0.0
    percentage: float = 0.0

class DisplayValue(BaseModel):
    """A USD amount converted for presentation; `amount` is None while the rate is pending."""
    currency: Currency
    amount: Optional[float] = None

    @computed_field
    @property
    def symbol(self) -> str:
        return CURRENCY_SYMBOLS[self.currency]

    @computed_field
    @property
    def pending(self) -> bool:
        return self.amount is None

    @computed_field
    @property
    def formatted(self) -> str:
        if self.amount is None:
            return "pending"
        return f"{self.amount:.2f}"

    def __str__(self) -> str:
        if self.amount is None:
            return self.formatted
        return f"{self.symbol} {self.formatted}"

class PortfolioRow(BaseModel):
    id: str
    ticker: str
    quantity: float
    buy_price: DisplayValue
    current_price: Optional[DisplayValue] = None
    invested: DisplayValue
    current: Optional[DisplayValue] = None
    profit_loss: Optional[DisplayValue] = None
    percentage: Optional[float] = None
    price_status: PriceStatus
    price_error: Optional[str] = None
    created_at: datetime

class PortfolioView(BaseModel):
    currency: Currency
    rows: List[PortfolioRow] = []
    invested: DisplayValue
    current: DisplayValue
    profit_loss: DisplayValue
    percentage: float = 0.0
    load_state: LoadState
    price_state: PriceState
    rate_state: RateState
    error: Optional[str] = None
