"""
MailShield Enrichment Services

Threat feed clients, the consensus aggregator and click-time protection.
"""

from .base import BaseFeedClient, FeedClient, detect_indicator_type
from .cache import ThreatFeedCache
from .click_time import ClickTimeChecker
from .consensus import ThreatIntelAggregator, threat_intel_signals
from .phishtank import PhishTankClient
from .urlhaus import URLhausClient

__all__ = [
    "BaseFeedClient",
    "FeedClient",
    "detect_indicator_type",
    "ThreatFeedCache",
    "ClickTimeChecker",
    "ThreatIntelAggregator",
    "threat_intel_signals",
    "PhishTankClient",
    "URLhausClient",
]
