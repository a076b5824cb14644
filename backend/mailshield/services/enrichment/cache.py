"""
MailShield Threat Feed Cache

Consensus results cached per indicator kind, each kind with its own TTL
and size bound. Keys are normalized indicators. Backed by the injectable
TTLCache so tests control the clock.
"""

import logging
from typing import Any, Dict, Optional

from mailshield.models.threat_intel import IndicatorType, ThreatIntelResult
from mailshield.utils.cache import Clock, TTLCache
from mailshield.utils.constants import CACHE_TTL_DOMAIN, CACHE_TTL_IP, CACHE_TTL_URL
from mailshield.utils.helpers import normalize_indicator

logger = logging.getLogger(__name__)


MAX_URL_ENTRIES = 50000
MAX_DOMAIN_ENTRIES = 20000
MAX_IP_ENTRIES = 10000


class ThreatFeedCache:
    """
    Per-kind TTL cache for ThreatIntelResult.

    Defaults: URLs 1 hour, domains 4 hours, IPs 2 hours.
    """

    def __init__(
        self,
        url_ttl: float = CACHE_TTL_URL,
        domain_ttl: float = CACHE_TTL_DOMAIN,
        ip_ttl: float = CACHE_TTL_IP,
        clock: Optional[Clock] = None,
    ):
        self._caches: Dict[IndicatorType, TTLCache[ThreatIntelResult]] = {
            IndicatorType.URL: TTLCache(url_ttl, MAX_URL_ENTRIES, clock),
            IndicatorType.DOMAIN: TTLCache(domain_ttl, MAX_DOMAIN_ENTRIES, clock),
            IndicatorType.IP: TTLCache(ip_ttl, MAX_IP_ENTRIES, clock),
        }

    def get(self, indicator: str, kind: IndicatorType) -> Optional[ThreatIntelResult]:
        return self._caches[kind].get(normalize_indicator(indicator))

    def set(self, result: ThreatIntelResult) -> None:
        self._caches[result.indicator_type].set(normalize_indicator(result.indicator), result)

    def evict(self, indicator: str, kind: IndicatorType) -> bool:
        return self._caches[kind].delete(normalize_indicator(indicator))

    def cleanup(self) -> int:
        """Sweep expired entries from every kind; returns how many were dropped."""
        removed = sum(cache.evict_expired() for cache in self._caches.values())
        if removed:
            logger.info(f"Threat feed cache cleanup removed {removed} entries")
        return removed

    def clear(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            kind.value: {**cache.stats().to_dict(), "max_size": cache.max_entries}
            for kind, cache in self._caches.items()
        }
