from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import time
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings, get_cors_config, validate_environment

from logging_config import setup_logging, get_logger
from sentry_integration import init_sentry, capture_exception

from routers import registration_router

settings = get_settings()

# JSON logs in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="league-registration"
)
logger = get_logger(__name__)

if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    logger.info("=" * 60)
    logger.info("Starting League Registration Core API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Registration backend: {settings.REGISTRATION_API_URL}")
    logger.info("=" * 60)

    env_status = validate_environment()
    if not env_status["valid"]:
        for error in env_status["errors"]:
            logger.error(f"Configuration Error: {error}")
        if settings.is_production:
            raise RuntimeError("Cannot start in production with invalid configuration")

    for warning in env_status.get("warnings", []):
        logger.warning(f"Configuration Warning: {warning}")

    yield

    logger.info("Shutting down League Registration Core API...")


app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Registration and payment reconciliation for tournament team and player sign-up.

    ## Features

    ### Registration (/api/registration)
    - POST /continue - Reconcile drafts against the backend, save new entries
      (batch, then single, then per-item retry) and build the checkout payload
    - POST /summary - Payment total for valid, unpaid entries
    - POST /validate - Field-level validation errors
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/health", tags=["Health"])
async def health_check():
    """
    Health check for load balancers and uptime monitors.

    The registration backend is not called here; its availability is
    reported per request by the continue endpoint.
    """
    env_status = validate_environment()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {
            "configuration": {
                "status": "valid" if env_status["valid"] else "invalid",
                "warnings": len(env_status.get("warnings", [])),
                "errors": len(env_status.get("errors", [])),
            }
        },
    }


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """
    Kubernetes liveness check.
    Returns 200 if the process is running (doesn't check dependencies).
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


api_router.include_router(registration_router)

app.include_router(api_router)

# ==================== MIDDLEWARE ====================

app.add_middleware(
    CORSMiddleware,
    **get_cors_config()
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log requests with timing information"""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")

    if settings.debug_enabled:
        logger.debug(f"[{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"[{request_id}] Request failed: {str(e)}")
        raise

    process_time = time.time() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

    if settings.debug_enabled or response.status_code >= 400:
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} -> "
            f"{response.status_code} ({process_time:.3f}s)"
        )
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}")
    capture_exception(exc, path=request.url.path)
    if settings.debug_enabled:
        logger.error(traceback.format_exc())

    # Internal errors are not exposed in production
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
        }
    )
