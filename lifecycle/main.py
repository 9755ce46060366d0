import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from lifecycle.api.router import api_router
from lifecycle.config import settings
from lifecycle.core.database import init_db
from lifecycle.core.exceptions import ExternalServiceError, LifecycleError


def setup_logging() -> None:
    """Configure application logging."""
    # Format: timestamp - level - logger name - message
    log_format = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    date_format = "%H:%M:%S"

    logging.basicConfig(
        level=logging.INFO,
        format=log_format,
        datefmt=date_format,
        stream=sys.stdout,
        force=True,
    )

    # Reduce noise from third-party libraries
    for noisy in ("httpx", "httpcore", "apscheduler", "stripe", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def log_missing_configuration() -> None:
    """Warn once at startup about integrations that will run disabled."""
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set: webhooks will answer 503")
    if not settings.admin_secret:
        logger.warning("ADMIN_SECRET not set: admin and maintenance endpoints will answer 503")
    if not settings.postmark_enabled:
        logger.warning("POSTMARK_API_KEY not set: lifecycle emails are skipped")
    if not settings.crm_enabled:
        logger.info("BREVO_API_KEY not set: CRM sync is skipped")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    from lifecycle.services.notifications import notification_dispatcher
    from lifecycle.services.scheduler import scheduler

    setup_logging()
    logger.info("Lifecycle API starting up")
    log_missing_configuration()
    if settings.debug:
        await init_db()
    scheduler.start()
    yield
    scheduler.stop()
    # Let in-flight emails and CRM syncs finish before the loop closes
    pending = notification_dispatcher.pending
    await notification_dispatcher.drain()
    logger.info(f"Lifecycle API shutting down ({pending} notification(s) drained)")


app = FastAPI(
    title="Lifecycle API",
    description="Account lifecycle orchestration: billing, quotas and account deletion",
    version="0.1.0",
    lifespan=lifespan,
)

# Proxy headers middleware - trust X-Forwarded-* from the reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log failures and every deletion, webhook and maintenance call."""
    if request.method == "OPTIONS" or request.url.path == "/health":
        return await call_next(request)

    response = await call_next(request)

    path = request.url.path
    if response.status_code >= 400 or any(
        keyword in path for keyword in ["deletion", "webhooks", "maintenance"]
    ):
        logger.info(f"{request.method} {path} -> {response.status_code}")

    return response


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    """Last resort for service errors a router did not translate."""
    if isinstance(exc, ExternalServiceError):
        logger.error(f"Upstream failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Upstream service unavailable"},
        )
    logger.exception(f"Untranslated {type(exc).__name__} on {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal error"},
    )


app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Liveness plus which background pieces are active in this process."""
    from lifecycle.services.scheduler import scheduler

    return {
        "status": "healthy",
        "scheduler": scheduler.running,
        "integrations": {
            "stripe": settings.stripe_enabled,
            "postmark": settings.postmark_enabled,
            "crm": settings.crm_enabled,
        },
    }
