"""
MailShield API Routes
"""

from fastapi import APIRouter

from .analyze import router as analyze_router
from .ato import router as ato_router
from .feedback import router as feedback_router
from .health import router as health_router
from .webhooks import router as webhooks_router


def get_api_router() -> APIRouter:
    """Create the versioned API router."""
    api_router = APIRouter(prefix="/api/v1")
    api_router.include_router(analyze_router)
    api_router.include_router(ato_router)
    api_router.include_router(feedback_router)
    api_router.include_router(health_router)
    api_router.include_router(webhooks_router)
    return api_router


__all__ = [
    "get_api_router",
    "analyze_router",
    "ato_router",
    "feedback_router",
    "health_router",
    "webhooks_router",
]
