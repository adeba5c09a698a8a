# main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from config.logging_config import configure_logging
from database import init_db
from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.accounts_routes import router as accounts_router
from routers.portfolio_routes import router as portfolio_router
from routers.positions_routes import router as positions_router
from routers.prices_routes import router as prices_router
from routers.sync_routes import router as sync_router

configure_logging()

app = FastAPI(title="Portfolio Backend")

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(portfolio_router, prefix="/api/portfolio")
app.include_router(sync_router, prefix="/api/portfolio")
app.include_router(accounts_router, prefix="/api/portfolio/accounts")
app.include_router(positions_router, prefix="/api/portfolio/positions")
app.include_router(prices_router, prefix="/api/portfolio/prices")

# db startup
init_db()


@app.get("/health")
def health():
    return {"status": "ok"}
