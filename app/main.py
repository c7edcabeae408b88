"""Billing API - FastAPI application entrypoint."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import AppConfig, load_config, log_config_snapshot
from app.correlation import CorrelationIdMiddleware, RequestIdLogFilter
from app.routers import auth
from app.routers import billing
from billing.service import BillingDisabledError, BillingService
from billing.stripe_client import StripeSettings, load_stripe_settings
from persistence.db import init_db

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    """Root logging with the request id on every line. No-op if already configured."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdLogFilter())
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler])


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Create the schema before the first request."""
    init_db()
    logger.info("Database initialized")
    yield


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests exceeding size limit to prevent payload bombs."""

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
            return JSONResponse(
                status_code=413,
                content={"status": 413, "message": "Request entity too large"},
            )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


def create_app(
    config: Optional[AppConfig] = None,
    stripe_settings: Optional[StripeSettings] = None,
    billing_service: Optional[BillingService] = None,
) -> FastAPI:
    """
    Build the application.

    The BillingService is created here, once per process, and reached by
    route handlers through app.state (see app.routers.billing.get_billing_service).
    """
    config = config or load_config()
    log_config_snapshot(config)

    if billing_service is None:
        billing_service = BillingService(stripe_settings or load_stripe_settings())

    started_at = datetime.now(timezone.utc)

    application = FastAPI(
        title="Billing API",
        description="Stripe subscription billing",
        version=config.service_version,
        lifespan=lifespan,
    )
    application.state.config = config
    application.state.billing = billing_service
    application.state.secure_cookies = config.secure_cookies

    # Added in reverse execution order: CorrelationId runs first
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[config.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestSizeLimitMiddleware, max_bytes=config.max_request_size_bytes)
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(BillingDisabledError, billing.billing_disabled_handler)

    application.include_router(auth.router)
    application.include_router(billing.router)

    @application.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
            "billing_enabled": billing_service.enabled,
            "started_at": started_at.isoformat(),
        }

    return application


app = create_app()
