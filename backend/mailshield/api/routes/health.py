"""
MailShield Health API Routes
"""

import logging

from fastapi import APIRouter, Depends

from mailshield.api.dependencies import Services, get_services
from mailshield.config.settings import get_settings
from mailshield.services.detection.engine import get_deterministic_engine
from mailshield.utils.helpers import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(services: Services = Depends(get_services)):
    """Liveness plus feed status and cache sizes."""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": settings.app_name,
        "version": settings.app_version,
        "rules": get_deterministic_engine().get_rule_summary(),
        "feeds": [
            feed.status.to_dict() if hasattr(feed, "status") else {"provider": feed.name}
            for feed in services.aggregator.feeds
        ],
        "threat_intel_cache": services.aggregator.cache.stats(),
    }
