"""
x402 Paywall - Main FastAPI Application
Pay-per-access gating for HTTP resources via HTTP 402 Payment Required
"""

import logging
import os
from contextlib import asynccontextmanager

import sqlalchemy as sa
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import database and paywall components
from api.database import init_db, close_db, engine, AsyncSessionLocal
from api.paywall.cache import get_cache_manager, close_cache
from api.paywall.config import get_paywall_config, validate_production_config
from api.paywall.database import PaymentLogRepository
from api.paywall.facilitator import FacilitatorClient
from api.paywall.middleware import PaywallMiddleware
from api.paywall.monitoring import get_metrics, get_metrics_content_type, system_info
from api.paywall.notices import NoticeQueue
from api.paywall.orchestrator import PaymentOrchestrator
from api.paywall.resources import StaticResourceStore
from api.paywall.routes import router as paywall_router, limiter
from api.paywall.sessions import SessionManager
from api.paywall.tokens import TokenRegistry

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Builds the read-only paywall collaborators once and tears them down on exit
    """
    logger.info("Starting x402 Paywall...")

    settings = get_paywall_config()
    validate_production_config(settings)

    if os.getenv("AUTO_INIT_DB", "false").lower() == "true":
        logger.info("Auto-initializing database...")
        await init_db()

    cache = await get_cache_manager()
    registry = TokenRegistry()
    repository = PaymentLogRepository(AsyncSessionLocal)
    facilitator = FacilitatorClient(settings.facilitator_url, timeout=settings.facilitator_timeout)

    app.state.settings = settings
    app.state.token_registry = registry
    app.state.resource_store = StaticResourceStore.from_settings(settings)
    app.state.payment_repository = repository
    app.state.orchestrator = PaymentOrchestrator(
        settings=settings,
        registry=registry,
        facilitator=facilitator,
        sessions=SessionManager(cache, settings.session_secret, ttl=settings.session_ttl),
        notices=NoticeQueue(cache, ttl=settings.notice_ttl),
        repository=repository,
    )

    system_info.info({'version': APP_VERSION, 'facilitator': settings.facilitator_url})
    logger.info(f"Loaded configuration: enabled={settings.enabled}, facilitator={settings.facilitator_url}, "
                f"evm={settings.enable_evm}, svm={settings.enable_svm}")
    logger.info("x402 Paywall started successfully")

    yield

    logger.info("Shutting down x402 Paywall...")
    await facilitator.close()
    await close_cache()
    await close_db()
    logger.info("x402 Paywall shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="x402 Paywall",
    description="Pay-per-access gating for HTTP resources via HTTP 402 Payment Required",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add paywall middleware
app.add_middleware(PaywallMiddleware, settings=get_paywall_config())

# CORS configuration
allowed_origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-PAYMENT-RESPONSE", "X-Payment-Session"],
)

# Include routers
app.include_router(paywall_router)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "x402 Paywall",
        "version": APP_VERSION,
        "documentation": "/docs",
        "paywall_endpoints": {
            "supported_tokens": "/paywall/supported-tokens",
            "requirements": "/paywall/resources/{resource_id}/requirements",
            "format_amount": "/paywall/format-amount",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "x402-paywall",
    }


@app.get("/ready")
async def ready(request: Request):
    """
    Readiness check endpoint
    Returns 200 if service is ready to accept traffic
    """
    checks = {}
    all_ready = True

    try:
        async with engine.connect() as conn:
            await conn.execute(sa.text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error(f"Database check failed: {e}")
        checks["database"] = "error"
        all_ready = False

    # Sessions cannot be issued without the store
    cache = await get_cache_manager()
    stats = await cache.get_stats()
    checks["cache"] = "ok" if stats["status"] == "connected" else stats["status"]
    if stats["status"] != "connected":
        all_ready = False

    if getattr(request.app.state, 'orchestrator', None) is None:
        checks["paywall"] = "not_initialized"
        all_ready = False
    else:
        checks["paywall"] = "ok"

    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "status": "ready" if all_ready else "not_ready",
            "checks": checks
        }
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics"""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# Example gated resources (register them in PAYWALL_RESOURCES to charge for them)
@app.get("/articles/{slug}")
async def get_article(slug: str):
    return {
        "article": slug,
        "content": "Premium article body",
    }


@app.get("/api/reports/{report_id}")
async def get_report(report_id: str):
    return {
        "report": report_id,
        "data": {"rows": 128, "generated": True},
    }


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    """Custom 500 handler"""
    logger.error(f"Internal error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later."
        }
    )


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    workers = int(os.getenv("WORKERS", "1"))
    reload = os.getenv("RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} with {workers} workers")

    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        workers=workers if not reload else 1,
        reload=reload,
        log_level="info",
    )
