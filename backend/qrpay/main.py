"""Main FastAPI application."""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qrpay.config import settings
from qrpay.database import AsyncSessionLocal
from qrpay.core.errors import PaymentError
from qrpay.api import merchants, payments, transactions, oracle, events
from qrpay.services.oracle_client import StarknetOracleClient
from qrpay.services.price_oracle_service import PriceOracleService
from qrpay.services.settlement_notifier import build_settlement_notifier

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


def build_price_oracle() -> PriceOracleService:
    """Oracle service wired to the configured Starknet contract."""
    client = StarknetOracleClient(
        rpc_url=settings.STARKNET_RPC_URL,
        oracle_address=settings.ORACLE_CONTRACT_ADDRESS,
        quote_function=settings.ORACLE_QUOTE_FUNCTION,
        scale=settings.ORACLE_SCALE,
        timeout=settings.ORACLE_TIMEOUT_SECONDS,
    )
    return PriceOracleService(
        client,
        base_currency=settings.BASE_FIAT_CURRENCY,
        target_currency=settings.TARGET_CRYPTO_CURRENCY,
        cache_ttl_seconds=settings.ORACLE_CACHE_TTL_SECONDS,
        refresh_interval_seconds=settings.ORACLE_REFRESH_INTERVAL_SECONDS,
        timeout_seconds=settings.ORACLE_TIMEOUT_SECONDS,
        fallback_rate=settings.ORACLE_FALLBACK_RATE,
        target_decimals=settings.TARGET_AMOUNT_DECIMALS,
        session_factory=AsyncSessionLocal,
    )


# Create FastAPI app
app = FastAPI(
    title="QR Pay API",
    version="1.0.0",
    description="QR payment sessions priced in fiat and settled in crypto through a Starknet oracle"
)

# Services owned by the application lifecycle
app.state.price_oracle = build_price_oracle()
app.state.settlement_notifier = build_settlement_notifier(
    settings.SETTLEMENT_WEBHOOK_URL,
    timeout=settings.SETTLEMENT_NOTIFY_TIMEOUT_SECONDS,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    merchants.router,
    prefix=f"{settings.API_V1_PREFIX}/merchants",
    tags=["merchants"]
)
# Payment and transaction routes declare full paths (custom verbs such as
# /payments:scan cannot hang off a router prefix)
app.include_router(
    payments.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["payments"]
)
app.include_router(
    transactions.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["transactions"]
)
app.include_router(
    oracle.router,
    prefix=f"{settings.API_V1_PREFIX}/oracle",
    tags=["oracle"]
)
app.include_router(
    events.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["events"]
)


@app.on_event("startup")
async def startup():
    """Application startup tasks."""
    logger.info("🚀 QR Pay API starting...")
    logger.info(f"📝 Environment: {settings.ENVIRONMENT}")
    logger.info(f"💱 Oracle {settings.ORACLE_CONTRACT_ADDRESS} via {settings.STARKNET_RPC_URL}")

    if settings.ORACLE_REFRESH_ENABLED:
        await app.state.price_oracle.start()


@app.on_event("shutdown")
async def shutdown():
    """Application shutdown tasks."""
    await app.state.price_oracle.stop()
    logger.info("👋 QR Pay API shutting down...")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "QR Pay API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "oracle_refresher_running": app.state.price_oracle.is_refreshing,
    }


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    """Render domain errors with their code and HTTP status."""
    if exc.status_code >= 500:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.to_detail()}
    )


# Global exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )
