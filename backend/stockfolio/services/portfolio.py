import asyncio
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from stockfolio.models.portfolio import (
    Currency, ExchangeRateSet, Holding, LoadState, PortfolioRow, PortfolioTotals, PortfolioView,
    PriceFetchError, PriceQuote, PriceState, PriceStatus, RateState
)
from stockfolio.models.user import User
from stockfolio.services.auth import IdentityProvider
from stockfolio.services.errors import (
    HoldingNotFound, NotAuthenticated, PortfolioError, RatesNotReady, UpstreamUnavailable, ValidationError
)
from stockfolio.services.holding_storage import InMemoryHoldingStore
from stockfolio.services import valuation
from stockfolio.utils.price_client import PriceClient, sanitize_ticker
from stockfolio.utils.rate_client import RateClient
from stockfolio.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class SessionContext:
    """Per-session state: who is signed in and the last loaded rate table."""
    user: Optional[User]
    rates: Optional[ExchangeRateSet] = None


class PortfolioController:
    """Owns one user's holdings for the lifetime of a session.

    The holding list is only ever replaced as a whole, so concurrent price
    results never leave it half-updated. Every failure is recorded in `error`
    and the controller stays usable.
    """

    def __init__(
        self,
        session: SessionContext,
        store: InMemoryHoldingStore,
        price_client: PriceClient,
        rate_client: RateClient,
    ):
        self.session = session
        self.store = store
        self.price_client = price_client
        self.rate_client = rate_client

        self.holdings: List[Holding] = []
        self.load_state = LoadState.IDLE
        self.price_state = PriceState.IDLE
        self.rate_state = RateState.IDLE
        self.error: Optional[str] = None
        self.closed = False

        self._prices_refreshing = False
        self._rates_refreshing = False

    def _require_user(self) -> User:
        if self.session.user is None:
            raise NotAuthenticated("Please sign in to manage your portfolio")
        return self.session.user

    async def start(self) -> None:
        """Load holdings, then fetch prices and rates side by side."""
        await self.load()
        await asyncio.gather(self.refresh_prices(), self.refresh_rates())

    async def load(self) -> None:
        user = self._require_user()
        self.load_state = LoadState.LOADING
        try:
            holdings = await self.store.list(user.id)
        except Exception as e:
            logger.error(f"Failed to load holdings for user {user.id}: {str(e)}")
            self.load_state = LoadState.LOAD_FAILED
            self.error = "Failed to load stocks"
            raise UpstreamUnavailable(self.error) from e

        if self.closed:
            return
        self.holdings = holdings
        self.load_state = LoadState.LOADED
        self.error = None

    async def refresh_prices(self) -> None:
        """Fetch current prices for every holding.

        A refresh already in flight makes this a no-op; that refresh also picks
        up holdings loaded while its batch was running.
        """
        self._require_user()
        if self._prices_refreshing:
            logger.info("Price refresh already in flight, ignoring request")
            return
        if not self.holdings:
            self.price_state = PriceState.LOADED
            return

        self._prices_refreshing = True
        self.price_state = PriceState.LOADING
        try:
            tickers = [h.ticker for h in self.holdings]
            while tickers:
                results = await self.price_client.fetch_prices(tickers)
                if self.closed:
                    return
                # holdings may have been reloaded while the batch was in flight
                self.holdings = [self._apply_price(h, results.get(h.ticker)) for h in self.holdings]
                tickers = [
                    h.ticker for h in self.holdings
                    if h.price_status == PriceStatus.PENDING and h.ticker not in results
                ]
        finally:
            self._prices_refreshing = False

        failed = [h.ticker for h in self.holdings if h.price_status == PriceStatus.FAILED]
        if failed:
            logger.warning(f"Price fetch failed for {', '.join(failed)}")
            self.price_state = PriceState.PARTIALLY_FAILED
        else:
            self.price_state = PriceState.LOADED

    def _apply_price(self, holding: Holding, result: Union[PriceQuote, PriceFetchError, None]) -> Holding:
        if result is None:
            return holding
        if isinstance(result, PriceFetchError):
            return holding.model_copy(update={
                "current_price": None,
                "price_status": PriceStatus.FAILED,
                "price_error": result.message,
            })
        return holding.model_copy(update={
            "current_price": result.price,
            "price_status": PriceStatus.OK,
            "price_error": None,
        })

    async def refresh_rates(self) -> None:
        """Single attempt. On failure every non-USD conversion becomes pending."""
        self._require_user()
        if self._rates_refreshing:
            return

        self._rates_refreshing = True
        self.rate_state = RateState.LOADING
        try:
            rates = await self.rate_client.fetch_rates()
        except UpstreamUnavailable as e:
            if not self.closed:
                self.session.rates = None
                self.rate_state = RateState.FAILED
                self.error = e.message
            return
        finally:
            self._rates_refreshing = False

        if self.closed:
            return
        self.session.rates = rates
        self.rate_state = RateState.LOADED
        self.error = None

    def _validate_entry(
        self,
        ticker: Optional[str],
        quantity: Optional[float],
        buy_price: Optional[float],
        currency: Currency,
    ) -> Tuple[str, float]:
        if not ticker or not ticker.strip() or quantity is None or buy_price is None:
            raise ValidationError("Please fill in all fields")
        if not (math.isfinite(quantity) and math.isfinite(buy_price)):
            raise ValidationError("Quantity and buy price must be valid numbers")
        if quantity <= 0 or buy_price <= 0:
            raise ValidationError("Quantity and buy price must be greater than 0")

        symbol = sanitize_ticker(ticker)
        if currency != Currency.USD and self.session.rates is None:
            raise RatesNotReady("Exchange rates not loaded yet")
        return symbol, valuation.to_usd(buy_price, currency, self.session.rates)

    async def add_stock(
        self,
        ticker: Optional[str],
        quantity: Optional[float],
        buy_price: Optional[float],
        currency: Currency = Currency.USD,
    ) -> Holding:
        """Validate, convert the buy price to USD, check the ticker upstream, then persist."""
        user = self._require_user()
        try:
            symbol, price_usd = self._validate_entry(ticker, quantity, buy_price, Currency(currency))
            await self.price_client.fetch_price(symbol)
            try:
                holding = await self.store.add(user.id, symbol, quantity, price_usd)
            except Exception as e:
                logger.error(f"Failed to persist {symbol} for user {user.id}: {str(e)}")
                raise UpstreamUnavailable("Failed to add stock") from e
        except PortfolioError as e:
            logger.warning(f"Add stock rejected for user {user.id}: {e.message}")
            self.error = e.message
            raise

        logger.info(f"Added {quantity} x {symbol} @ {price_usd:.4f} USD for user {user.id}")
        await self.load()
        await self.refresh_prices()
        return holding

    async def delete_stock(self, holding_id: str, confirmed: bool) -> bool:
        """Remove a holding once the user has confirmed. Returns False when declined."""
        user = self._require_user()
        if not confirmed:
            return False

        try:
            try:
                deleted = await self.store.delete(user.id, holding_id)
            except Exception as e:
                logger.error(f"Failed to delete holding {holding_id} for user {user.id}: {str(e)}")
                raise UpstreamUnavailable("Failed to delete stock") from e
            if not deleted:
                raise HoldingNotFound()
        except PortfolioError as e:
            self.error = e.message
            raise

        logger.info(f"Deleted holding {holding_id} for user {user.id}")
        await self.load()
        await self.refresh_prices()
        return True

    def totals(self) -> PortfolioTotals:
        return valuation.aggregate(self.holdings)

    def view(self, currency: Currency = Currency.USD) -> PortfolioView:
        """Holdings and totals converted into `currency` for display."""
        currency = Currency(currency)
        rates = self.session.rates

        def display(value: Optional[float]):
            if value is None:
                return None
            return valuation.to_display(value, currency, rates)

        rows = []
        for holding in self.holdings:
            valued = valuation.value_holding(holding)
            rows.append(PortfolioRow(
                id=holding.id,
                ticker=holding.ticker,
                quantity=holding.quantity,
                buy_price=display(holding.buy_price),
                current_price=display(holding.current_price),
                invested=display(valued.invested),
                current=display(valued.current),
                profit_loss=display(valued.profit_loss),
                percentage=valued.percentage,
                price_status=holding.price_status,
                price_error=holding.price_error,
                created_at=holding.created_at,
            ))

        totals = self.totals()
        return PortfolioView(
            currency=currency,
            rows=rows,
            invested=display(totals.invested),
            current=display(totals.current),
            profit_loss=display(totals.profit_loss),
            percentage=totals.percentage,
            load_state=self.load_state,
            price_state=self.price_state,
            rate_state=self.rate_state,
            error=self.error,
        )

    def close(self) -> None:
        """Tear down at sign-out. Fetches still in flight are discarded when they land."""
        self.closed = True
        self.session.user = None
        self.session.rates = None


class PortfolioSessions:
    """One controller per signed-in user, closed when that user signs out or their tokens expire."""

    def __init__(
        self,
        identity: IdentityProvider,
        store: InMemoryHoldingStore,
        price_client: PriceClient,
        rate_client: RateClient,
    ):
        self.identity = identity
        self.store = store
        self.price_client = price_client
        self.rate_client = rate_client
        self.controllers: Dict[str, PortfolioController] = {}
        self._unsubscribe = identity.on_auth_change(self._on_auth_change)

    def controller_for(self, user: User) -> PortfolioController:
        self.prune(keep=user.id)
        controller = self.controllers.get(user.id)
        if controller is None:
            controller = PortfolioController(
                SessionContext(user=user), self.store, self.price_client, self.rate_client
            )
            self.controllers[user.id] = controller
            logger.info(f"Started portfolio session for user {user.id}")
        return controller

    def prune(self, keep: Optional[str] = None) -> None:
        """End sessions whose users no longer hold a live token."""
        for user_id in list(self.controllers):
            if user_id != keep and not self.identity.has_active_session(user_id):
                self.end(user_id)

    def end(self, user_id: str) -> None:
        controller = self.controllers.pop(user_id, None)
        if controller is not None:
            controller.close()
            logger.info(f"Ended portfolio session for user {user_id}")

    def _on_auth_change(self, user_id: str, user: Optional[User]) -> None:
        if user is None:
            self.end(user_id)

    def close(self) -> None:
        self._unsubscribe()
        for user_id in list(self.controllers):
            self.end(user_id)
