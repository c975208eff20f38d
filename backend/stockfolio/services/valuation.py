# backend/stockfolio/services/valuation.py
"""Portfolio valuation and currency conversion.

All inputs are USD. Currency rates are applied only when a value is displayed
(`to_display`) or when a user enters a buy price in another currency (`to_usd`).
"""
from typing import Iterable, Optional

from stockfolio.models.portfolio import (
    Currency, DisplayValue, ExchangeRateSet, Holding, HoldingValuation, PortfolioTotals
)
from stockfolio.services.errors import RatesNotReady


def invested_amount(quantity: float, buy_price: float) -> float:
    return quantity * buy_price


def current_value(quantity: float, current_price: float) -> float:
    return quantity * current_price


def profit_loss(current: float, invested: float) -> float:
    return current - invested


def profit_loss_percentage(profit_loss: float, invested: float) -> float:
    if invested == 0:
        return 0.0
    return profit_loss / invested * 100


def value_holding(holding: Holding) -> HoldingValuation:
    """Per-row valuation. Current value stays None until a price is known."""
    invested = invested_amount(holding.quantity, holding.buy_price)
    if holding.current_price is None:
        return HoldingValuation(holding=holding, invested=invested)

    current = current_value(holding.quantity, holding.current_price)
    pl = profit_loss(current, invested)
    return HoldingValuation(
        holding=holding,
        invested=invested,
        current=current,
        profit_loss=pl,
        percentage=profit_loss_percentage(pl, invested),
    )


def aggregate(holdings: Iterable[Holding]) -> PortfolioTotals:
    """Portfolio totals derived from the summed amounts, never from per-row percentages."""
    invested_total = 0.0
    current_total = 0.0
    for holding in holdings:
        invested_total += invested_amount(holding.quantity, holding.buy_price)
        if holding.current_price is not None:
            current_total += current_value(holding.quantity, holding.current_price)

    pl = profit_loss(current_total, invested_total)
    return PortfolioTotals(
        invested=invested_total,
        current=current_total,
        profit_loss=pl,
        percentage=profit_loss_percentage(pl, invested_total),
    )


def _rate(currency: Currency, rates: Optional[ExchangeRateSet]) -> Optional[float]:
    if Currency(currency) == Currency.USD:
        return 1.0
    if rates is None:
        return None
    return rates.rate_for(currency)


def to_display(usd_value: float, currency: Currency, rates: Optional[ExchangeRateSet]) -> DisplayValue:
    rate = _rate(currency, rates)
    if rate is None:
        return DisplayValue(currency=currency)
    return DisplayValue(currency=currency, amount=usd_value * rate)


def from_display(amount: float, currency: Currency, rates: Optional[ExchangeRateSet]) -> float:
    rate = _rate(currency, rates)
    if rate is None:
        raise RatesNotReady()
    return amount / rate


def to_usd(entered_price: float, currency: Currency, rates: Optional[ExchangeRateSet]) -> float:
    """Convert a buy price entered in `currency` to the USD figure that gets stored."""
    return from_display(entered_price, currency, rates)
