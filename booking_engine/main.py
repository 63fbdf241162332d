"""
Spares Booking Engine - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from booking_engine.core.config import settings
from booking_engine.core.logging import setup_logging, get_logger
from booking_engine.core.middleware import setup_middleware, setup_exception_handlers
from booking_engine.api.routes import router as api_router
from booking_engine.db.database import engine, init_db

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {
        "name": "Shipments",
        "description": "Authorized, prepaid shipment booking: quote, book, track status, cancel.",
    },
    {"name": "Wallets", "description": "Brand wallets: balance, history, recharges and ledger audit."},
    {"name": "Pricing", "description": "Per-brand courier rates (admin)."},
    {"name": "Parts", "description": "Catalog approval workflow for spare parts."},
    {"name": "Network", "description": "Recipients each brand is authorized to ship to."},
    {"name": "Carrier", "description": "Asynchronous AWB callbacks from the courier partner."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Wallet ledger and authorized shipment booking engine for a spare-parts "
        "distribution network."
    ),
    openapi_tags=_OPENAPI_TAGS,
    openapi_url="/openapi.json",
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local frontend development without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "Idempotency-Key"],
    )

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await init_db()
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    from booking_engine.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness check",
    description="The process is up. Dependencies are not checked, so a DB outage never triggers a restart.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness check",
    description="Checks the database, Redis and the Celery broker. 503 when any is unavailable.",
    tags=["Health"],
)
async def readiness_check():
    from booking_engine.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
