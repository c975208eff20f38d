# backend/stockfolio/routes/portfolio.py
from fastapi import APIRouter, Depends, Query
from typing import Optional

from ..models.portfolio import AddStockRequest, Currency, LoadState, PortfolioView, PriceQuote
from ..models.user import User
from ..routes.auth import get_current_user, get_identity_provider
from ..services.auth import IdentityProvider
from ..services.holding_storage import holding_store
from ..services.portfolio import PortfolioController, PortfolioSessions
from ..utils.price_client import get_price_client
from ..utils.rate_client import get_rate_client

router = APIRouter()

_sessions: Optional[PortfolioSessions] = None

def get_portfolio_sessions(identity: IdentityProvider = Depends(get_identity_provider)) -> PortfolioSessions:
    global _sessions
    if _sessions is None:
        _sessions = PortfolioSessions(identity, holding_store, get_price_client(), get_rate_client())
    return _sessions

async def get_controller(
    current_user: User = Depends(get_current_user),
    sessions: PortfolioSessions = Depends(get_portfolio_sessions)
) -> PortfolioController:
    controller = sessions.controller_for(current_user)
    if controller.load_state in (LoadState.IDLE, LoadState.LOAD_FAILED):
        await controller.start()
    return controller

@router.get("/", response_model=PortfolioView)
async def get_portfolio(
    currency: Currency = Query(Currency.USD),
    controller: PortfolioController = Depends(get_controller)
):
    return controller.view(currency)

@router.post("/stocks", response_model=PortfolioView, status_code=201)
async def add_stock(
    stock_data: AddStockRequest,
    controller: PortfolioController = Depends(get_controller)
):
    await controller.add_stock(
        stock_data.ticker, stock_data.quantity, stock_data.buy_price, stock_data.currency
    )
    return controller.view(stock_data.currency)

@router.delete("/stocks/{holding_id}", response_model=PortfolioView)
async def delete_stock(
    holding_id: str,
    confirm: bool = Query(False),
    currency: Currency = Query(Currency.USD),
    controller: PortfolioController = Depends(get_controller)
):
    await controller.delete_stock(holding_id, confirmed=confirm)
    return controller.view(currency)

@router.post("/prices/refresh", response_model=PortfolioView)
async def refresh_prices(
    currency: Currency = Query(Currency.USD),
    controller: PortfolioController = Depends(get_controller)
):
    await controller.refresh_prices()
    return controller.view(currency)

@router.post("/rates/refresh", response_model=PortfolioView)
async def refresh_rates(
    currency: Currency = Query(Currency.USD),
    controller: PortfolioController = Depends(get_controller)
):
    await controller.refresh_rates()
    return controller.view(currency)

@router.get("/quote/{ticker}", response_model=PriceQuote)
async def get_quote(
    ticker: str,
    current_user: User = Depends(get_current_user),
    sessions: PortfolioSessions = Depends(get_portfolio_sessions)
):
    return await sessions.price_client.fetch_price(ticker)
