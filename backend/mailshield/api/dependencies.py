"""
MailShield API Dependencies

Process-wide service instances for FastAPI dependency injection. They are
built once by ``init_services`` during application startup; the getters
build them lazily when the app is used without its lifespan (tests).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from mailshield.config.settings import Settings, get_settings
from mailshield.services.ato.impossible_travel import ImpossibleTravelDetector
from mailshield.services.behavioral.anomaly import AnomalyDetector
from mailshield.services.behavioral.baseline import BaselineStore
from mailshield.services.bec.impersonation import ImpersonationDetector
from mailshield.services.bec.vip import InMemoryVIPDirectory
from mailshield.services.enrichment.click_time import ClickTimeChecker
from mailshield.services.enrichment.consensus import ThreatIntelAggregator
from mailshield.services.enrichment.phishtank import PhishTankClient
from mailshield.services.enrichment.urlhaus import URLhausClient
from mailshield.services.pipeline import EmailRiskPipeline

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes need, wired together."""
    aggregator: ThreatIntelAggregator
    click_time: ClickTimeChecker
    vip_directory: InMemoryVIPDirectory
    baselines: BaselineStore
    anomaly: AnomalyDetector
    travel: ImpossibleTravelDetector
    pipeline: EmailRiskPipeline


_services: Optional[Services] = None


def build_services(settings: Settings) -> Services:
    """Create the detectors and the feed clients configured in settings."""
    feeds = [
        URLhausClient(auth_key=settings.urlhaus_auth_key),
        PhishTankClient(app_key=settings.phishtank_app_key),
    ]
    aggregator = ThreatIntelAggregator(feeds)
    vip_directory = InMemoryVIPDirectory()
    anomaly = AnomalyDetector()

    return Services(
        aggregator=aggregator,
        click_time=ClickTimeChecker(aggregator),
        vip_directory=vip_directory,
        baselines=BaselineStore(),
        anomaly=anomaly,
        travel=ImpossibleTravelDetector(),
        pipeline=EmailRiskPipeline(
            aggregator=aggregator,
            impersonation=ImpersonationDetector(vip_directory),
            anomaly=anomaly,
            budget_seconds=settings.pipeline_budget_seconds,
        ),
    )


def init_services(settings: Optional[Settings] = None) -> Services:
    """Build (or rebuild) the global service set."""
    global _services
    _services = build_services(settings or get_settings())
    configured = [f.name for f in _services.aggregator.feeds if getattr(f, "is_configured", True)]
    logger.info(f"Services initialized; feeds configured: {', '.join(configured) or 'none'}")
    return _services


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def reset_services() -> None:
    global _services
    _services = None


def get_pipeline() -> EmailRiskPipeline:
    return get_services().pipeline


def get_click_time_checker() -> ClickTimeChecker:
    return get_services().click_time


def get_anomaly_detector() -> AnomalyDetector:
    return get_services().anomaly


def get_baseline_store() -> BaselineStore:
    return get_services().baselines


def get_vip_directory() -> InMemoryVIPDirectory:
    return get_services().vip_directory


def get_travel_detector() -> ImpossibleTravelDetector:
    return get_services().travel
