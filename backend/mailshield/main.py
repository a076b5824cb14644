"""
MailShield API Application

FastAPI entry point for the detection service.
"""

# Load environment variables before settings are read
from dotenv import load_dotenv

load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailshield.api.dependencies import init_services
from mailshield.api.routes import get_api_router, health_router
from mailshield.config.settings import get_settings
from mailshield.utils.constants import APP_DESCRIPTION
from mailshield.utils.exceptions import (
    ConfigurationError,
    EnrichmentError,
    MailShieldError,
    RateLimitError,
    ValidationError,
    WebhookSignatureError,
)
from mailshield.utils.security import RateLimiter, RateLimitMiddleware

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(f"Starting {settings.app_name} {settings.app_version}...")
    init_services(settings)

    logger.info("=== Feed Configuration ===")
    logger.info(f"  URLhaus:   {'✓' if settings.urlhaus_auth_key else '✗'}")
    logger.info(f"  PhishTank: {'✓' if settings.phishtank_app_key else '✗'}")
    logger.info(f"  Webhooks:  {'✓' if settings.webhook_secret else '✗'}")

    yield

    logger.info(f"Shutting down {settings.app_name}...")


app = FastAPI(
    title=settings.app_name,
    description=APP_DESCRIPTION,
    version=settings.app_version,
    lifespan=lifespan,
)

if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        limiter=RateLimiter(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        ),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

ERROR_STATUS = [
    (WebhookSignatureError, 401),
    (ValidationError, 400),
    (RateLimitError, 429),
    (EnrichmentError, 502),
    (ConfigurationError, 500),
]


@app.exception_handler(MailShieldError)
async def mailshield_error_handler(request: Request, exc: MailShieldError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    content = {"detail": exc.message, "error": type(exc).__name__}
    headers = None
    if isinstance(exc, WebhookSignatureError):
        content["code"] = exc.code
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(int(exc.retry_after))}
    if status_code >= 500:
        logger.error(f"{request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=content, headers=headers)


app.include_router(health_router)
app.include_router(get_api_router())


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mailshield.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
