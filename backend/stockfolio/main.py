# backend/stockfolio/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import os
from dotenv import load_dotenv

from .routes import auth, portfolio, health
from .services.errors import PortfolioError
from .utils.logger import setup_logger

# Load environment variables
load_dotenv()

# Initialize logger
logger = setup_logger()

# Create FastAPI app
app = FastAPI(
    title=os.getenv("APP_NAME", "Stockfolio"),
    description="Stock portfolio tracker with currency-aware valuations",
    version=os.getenv("API_VERSION", "v1"),
    docs_url="/docs" if os.getenv("DEBUG", "False").lower() == "true" else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(portfolio.router, prefix="/api/portfolio", tags=["Portfolio"])

@app.exception_handler(PortfolioError)
async def portfolio_exception_handler(request: Request, exc: PortfolioError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message}
    )

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "stockfolio.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True
    )
