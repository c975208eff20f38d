# backend/stockfolio/routes/health.py
from fastapi import APIRouter
from datetime import datetime, timezone
import os

router = APIRouter()

@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc),
        "version": os.getenv("API_VERSION", "v1"),
        "app": os.getenv("APP_NAME", "Stockfolio")
    }

@router.get("/health/detailed")
async def detailed_health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc),
        "services": {
            "api": "healthy",
            "auth": "in_memory",
            "database": "in_memory",
            "price_api": os.getenv("PRICE_API_URL", "http://localhost:3000/api/getStockPrice"),
            "exchange_rate_api": os.getenv("EXCHANGE_RATE_API_URL", "http://localhost:3000/api/getExchangeRates")
        }
    }
