import asyncio

import pytest

from stockfolio.models.portfolio import Currency, LoadState, PriceState, PriceStatus, RateState
from stockfolio.models.user import UserCreate, UserLogin
from stockfolio.services.auth import IdentityProvider
from stockfolio.services.errors import (
    HoldingNotFound, InvalidTicker, NoData, NotAuthenticated, RatesNotReady, UpstreamUnavailable, ValidationError
)
from stockfolio.services.portfolio import PortfolioController, PortfolioSessions, SessionContext


async def test_start_loads_holdings_prices_and_rates(controller, store, user):
    await store.add(user.id, "AAPL", 10, 150.0)
    await store.add(user.id, "MSFT", 2, 300.0)

    await controller.start()

    assert controller.load_state == LoadState.LOADED
    assert controller.price_state == PriceState.LOADED
    assert controller.rate_state == RateState.LOADED
    assert [h.ticker for h in controller.holdings] == ["MSFT", "AAPL"]
    assert all(h.price_status == PriceStatus.OK for h in controller.holdings)
    assert controller.session.rates.INR == 83


async def test_add_usd_holding_increases_invested_by_1500(controller):
    await controller.start()
    before = controller.totals().invested

    await controller.add_stock("AAPL", 10, 150, Currency.USD)

    assert controller.totals().invested - before == pytest.approx(1500.00)
    assert controller.view(Currency.USD).invested.formatted == "1500.00"
    assert controller.error is None


async def test_add_foreign_currency_stores_usd(controller, store, user):
    await controller.start()

    await controller.add_stock("aapl", 1, 8300, Currency.INR)

    stored = await store.list(user.id)
    assert stored[0].ticker == "AAPL"
    assert stored[0].buy_price == pytest.approx(100.0)


async def test_add_foreign_currency_before_rates_loaded(controller, store, user, upstream):
    await controller.load()

    with pytest.raises(RatesNotReady):
        await controller.add_stock("AAPL", 1, 100, Currency.EUR)

    assert controller.error == "Exchange rates not loaded yet"
    assert upstream.price_calls == []
    assert await store.list(user.id) == []


@pytest.mark.parametrize("ticker,quantity,price,message", [
    ("", 1, 10, "Please fill in all fields"),
    ("AAPL", None, 10, "Please fill in all fields"),
    ("AAPL", 1, None, "Please fill in all fields"),
    ("AAPL", 0, 10, "Quantity and buy price must be greater than 0"),
    ("AAPL", 5, -1, "Quantity and buy price must be greater than 0"),
    ("AAPL", float("nan"), 10, "Quantity and buy price must be valid numbers"),
])
async def test_add_rejects_invalid_input_before_any_network_call(controller, upstream, ticker, quantity, price, message):
    await controller.load()

    with pytest.raises(ValidationError):
        await controller.add_stock(ticker, quantity, price)

    assert controller.error == message
    assert upstream.price_calls == []
    assert controller.holdings == []


async def test_add_rejects_ticker_that_sanitizes_to_nothing(controller, upstream):
    await controller.load()
    with pytest.raises(InvalidTicker):
        await controller.add_stock("$$", 1, 10)
    assert upstream.price_calls == []


async def test_add_unknown_ticker_is_not_created(controller, store, user):
    await controller.start()

    with pytest.raises(NoData):
        await controller.add_stock("NOPE", 1, 10)

    assert controller.error == "Invalid ticker symbol or no data available"
    assert await store.list(user.id) == []
    assert controller.load_state == LoadState.LOADED


async def test_error_cleared_by_next_successful_operation(controller):
    await controller.start()
    with pytest.raises(UpstreamUnavailable):
        await controller.add_stock("BADTICKER", 1, 10)
    assert controller.error

    await controller.add_stock("MSFT", 1, 10)
    assert controller.error is None


async def test_price_failure_is_isolated_to_its_holding(controller, store, user):
    await store.add(user.id, "AAPL", 10, 150.0)
    await store.add(user.id, "BADTICKER", 5, 20.0)
    await controller.load()

    await controller.refresh_prices()

    by_ticker = {h.ticker: h for h in controller.holdings}
    assert by_ticker["AAPL"].current_price == 190.0
    assert by_ticker["BADTICKER"].current_price is None
    assert by_ticker["BADTICKER"].price_status == PriceStatus.FAILED
    assert by_ticker["BADTICKER"].price_error
    assert controller.price_state == PriceState.PARTIALLY_FAILED

    totals = controller.totals()
    assert totals.current == pytest.approx(1900.0)
    assert totals.invested == pytest.approx(1600.0)


async def test_refresh_while_in_flight_is_a_no_op(controller, store, user, upstream):
    await store.add(user.id, "AAPL", 1, 100.0)
    await controller.load()
    upstream.gate = asyncio.Event()

    first = asyncio.create_task(controller.refresh_prices())
    while not upstream.price_calls:
        await asyncio.sleep(0)

    await controller.refresh_prices()
    assert controller.price_state == PriceState.LOADING

    upstream.gate.set()
    await first
    assert upstream.price_calls == ["AAPL"]
    assert controller.price_state == PriceState.LOADED


async def test_results_landing_after_close_are_discarded(controller, store, user, upstream):
    await store.add(user.id, "AAPL", 1, 100.0)
    await controller.load()
    upstream.gate = asyncio.Event()

    pending = asyncio.create_task(controller.refresh_prices())
    while not upstream.price_calls:
        await asyncio.sleep(0)
    controller.close()
    upstream.gate.set()
    await pending

    assert controller.holdings[0].price_status == PriceStatus.PENDING
    assert controller.session.user is None


async def test_rate_failure_keeps_foreign_display_pending(controller, store, user, upstream):
    upstream.rates_status = 500
    await store.add(user.id, "AAPL", 10, 100.0)

    await controller.start()

    assert controller.rate_state == RateState.FAILED
    assert controller.error == "Exchange rate fetch failed"
    view = controller.view(Currency.INR)
    assert view.invested.pending
    assert view.rows[0].buy_price.pending
    assert controller.view(Currency.USD).invested.formatted == "1000.00"

    upstream.rates_status = 200
    await controller.refresh_rates()
    assert controller.rate_state == RateState.LOADED
    assert controller.view(Currency.INR).invested.formatted == "83000.00"


async def test_declined_delete_leaves_holdings_unchanged(controller):
    await controller.start()
    await controller.add_stock("AAPL", 10, 150)
    before = list(controller.holdings)

    assert await controller.delete_stock(before[0].id, confirmed=False) is False
    assert controller.holdings == before


async def test_confirmed_delete_reloads_list(controller, store, user):
    await controller.start()
    await controller.add_stock("AAPL", 10, 150)
    await controller.add_stock("MSFT", 1, 300)
    target = next(h for h in controller.holdings if h.ticker == "AAPL")

    assert await controller.delete_stock(target.id, confirmed=True) is True

    assert [h.ticker for h in controller.holdings] == ["MSFT"]
    assert [h.ticker for h in await store.list(user.id)] == ["MSFT"]


async def test_delete_unknown_holding(controller):
    await controller.start()
    with pytest.raises(HoldingNotFound):
        await controller.delete_stock("missing", confirmed=True)
    assert controller.error == "Holding not found"


async def test_operations_require_a_signed_in_user(store, price_client, rate_client, upstream):
    controller = PortfolioController(SessionContext(user=None), store, price_client, rate_client)

    with pytest.raises(NotAuthenticated):
        await controller.load()
    with pytest.raises(NotAuthenticated):
        await controller.add_stock("AAPL", 1, 1)
    with pytest.raises(NotAuthenticated):
        await controller.delete_stock("x", confirmed=True)
    assert upstream.price_calls == []


async def test_load_failure_is_reported(controller):
    class BrokenStore:
        async def list(self, user_id):
            raise ConnectionError("store offline")

    controller.store = BrokenStore()
    with pytest.raises(UpstreamUnavailable):
        await controller.load()
    assert controller.load_state == LoadState.LOAD_FAILED
    assert controller.error == "Failed to load stocks"


async def test_view_in_inr(controller, store, user):
    await store.add(user.id, "AAPL", 10, 100.0)
    await controller.start()

    view = controller.view(Currency.INR)

    assert view.invested.formatted == "83000.00"
    assert view.current.formatted == "157700.00"
    assert view.rows[0].current_price.formatted == "15770.00"
    assert view.percentage == pytest.approx(90.0)


def test_sessions_end_when_user_signs_out(store, price_client, rate_client):
    identity = IdentityProvider()
    sessions = PortfolioSessions(identity, store, price_client, rate_client)
    identity.sign_up(UserCreate(email="ada@example.com", password="correct-horse"))
    token = identity.sign_in(UserLogin(email="ada@example.com", password="correct-horse"))
    user = identity.current_user(token.access_token)

    controller = sessions.controller_for(user)
    assert sessions.controller_for(user) is controller

    identity.sign_out(token.access_token)

    assert controller.closed
    assert controller.session.user is None
    assert user.id not in sessions.controllers
    assert sessions.controller_for(user) is not controller


async def test_holding_added_during_price_refresh_gets_priced(controller, store, user, upstream):
    await store.add(user.id, "AAPL", 1, 100.0)
    await controller.load()
    gate = asyncio.Event()
    upstream.gate = gate

    in_flight = asyncio.create_task(controller.refresh_prices())
    while not upstream.price_calls:
        await asyncio.sleep(0)
    upstream.gate = None

    await controller.add_stock("MSFT", 1, 300)
    gate.set()
    await in_flight

    by_ticker = {h.ticker: h for h in controller.holdings}
    assert by_ticker["MSFT"].price_status == PriceStatus.OK
    assert by_ticker["MSFT"].current_price == 410.0
    assert by_ticker["AAPL"].current_price == 190.0
    assert controller.price_state == PriceState.LOADED


def test_sessions_with_expired_tokens_are_pruned(store, price_client, rate_client):
    identity = IdentityProvider()
    sessions = PortfolioSessions(identity, store, price_client, rate_client)
    for email in ("ada@example.com", "bob@example.com"):
        identity.sign_up(UserCreate(email=email, password="correct-horse"))

    identity.auth_service.access_token_expire_minutes = -1
    identity.sign_in(UserLogin(email="ada@example.com", password="correct-horse"))
    ada = identity.storage.get_user_by_id(identity.storage.users_by_email["ada@example.com"])
    stale = sessions.controller_for(ada)
    assert not identity.has_active_session(ada.id)

    identity.auth_service.access_token_expire_minutes = 30
    token = identity.sign_in(UserLogin(email="bob@example.com", password="correct-horse"))
    bob = identity.current_user(token.access_token)
    sessions.controller_for(bob)

    assert stale.closed
    assert ada.id not in sessions.controllers
    assert bob.id in sessions.controllers
    assert identity.has_active_session(bob.id)
