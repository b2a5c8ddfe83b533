"""
FastAPI application main module.
Wires logging, middleware, domain error mapping and the v1 API router.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
import os
from contextlib import asynccontextmanager
from spendsync.api.v1 import api_router
from spendsync.utils import setup_logging, get_logger
from spendsync.database import engine
from spendsync.database import Base
from spendsync.exceptions import (
    MergeError,
    PlatformNotConnectedError,
    ProviderRequestError,
    ProviderTransientError,
    SpendSyncError,
    SyncInProgressError,
    UnsupportedPlatformError,
)
from spendsync.services.currency import get_exchange_rate_cache

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/spendsync.log"),
    enable_console=True
)

logger = get_logger(__name__)

# Most specific first; the first isinstance match wins.
ERROR_STATUS_CODES = (
    (PlatformNotConnectedError, 409),
    (SyncInProgressError, 409),
    (ProviderTransientError, 503),
    (ProviderRequestError, 502),
    (UnsupportedPlatformError, 404),
    (MergeError, 500),
)


def status_code_for(exc: SpendSyncError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates tables on startup and drops the cached FX snapshot on shutdown.
    """
    logger.info("Application startup initiated")
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        get_exchange_rate_cache().clear()
        logger.info("Application shutdown completed")

app = FastAPI(
    title="SpendSync",
    description="""
    Daily ad spend and revenue aggregation across advertising, payment and
    subscription providers.

    ## Features
    * **Provider sync** - Google Ads, Meta, TikTok, LinkedIn, Stripe, PostHog, RevenueCat
    * **USD normalization** - every stored amount is converted on the way in
    * **Two aggregates** - per (country, day, platform) and per (campaign, country, day)
    * **Campaign attribution** - roll campaign-only data up to countries on read
    * **Manual entries** - custom sources edited one key at a time
    * **RevenueCat webhooks** - revenue events accumulated as they arrive

    ## Caller identity
    Every `/api/v1` route except the webhook expects an `X-User-ID` header.
    The webhook authenticates with the bearer secret stored on the user's
    RevenueCat connection.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

# CORS middleware - configure appropriately for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request ID and request/response logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID and timing, log request start and completion.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

# Custom exception handlers
@app.exception_handler(SpendSyncError)
async def domain_exception_handler(request: Request, exc: SpendSyncError):
    """Map domain errors onto HTTP status codes."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = status_code_for(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Domain error",
        error=str(exc),
        error_type=type(exc).__name__,
        status_code=status_code,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    content = {
        "success": False,
        "message": str(exc),
        "error_type": type(exc).__name__,
        "retryable": bool(getattr(exc, "retryable", False)),
        "request_id": request_id
    }
    platform = getattr(exc, "platform", None)
    if platform:
        content["platform"] = platform
    return JSONResponse(status_code=status_code, content=content)

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Invalid input that passed schema validation but not domain validation."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Invalid request",
        error=str(exc),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": str(exc),
            "request_id": request_id
        }
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                for error in exc.errors()
            ],
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    snapshot = get_exchange_rate_cache().snapshot
    return {
        "status": "healthy",
        "service": "spendsync",
        "version": "1.0.0",
        "timestamp": time.time(),
        "fx_rates_cached_at": snapshot.fetched_at.isoformat() if snapshot else None,
    }

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "SpendSync API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "spendsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["spendsync"],
        log_level="info",
        access_log=True
    )
