"""
MailShield Click-Time URL Protection

Re-checks a rewritten link when the user clicks it. The consensus lookup
runs under a short deadline; when it does not finish in time the click
is allowed and the miss is recorded as a ``check_timeout`` signal rather
than making the user wait.

Actions:
    block  consensus score >= 80
    warn   consensus score >= 40
    allow  otherwise
"""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from mailshield.config.settings import get_settings
from mailshield.models.signals import Severity, Signal, ThreatIntelSignalType
from mailshield.models.threat_intel import ClickTimeVerdict
from mailshield.utils.cache import Clock, TTLCache
from mailshield.utils.helpers import normalize_indicator

from .consensus import ThreatIntelAggregator, threat_intel_signals

logger = logging.getLogger(__name__)


BLOCK_THRESHOLD = 80
WARN_THRESHOLD = 40


class ClickTimeChecker:
    """Cached, deadline-bounded URL verdicts at click time."""

    def __init__(
        self,
        aggregator: ThreatIntelAggregator,
        cache: Optional[TTLCache[ClickTimeVerdict]] = None,
        timeout: Optional[float] = None,
        block_threshold: int = BLOCK_THRESHOLD,
        warn_threshold: int = WARN_THRESHOLD,
        clock: Optional[Clock] = None,
    ):
        settings = get_settings()
        self.aggregator = aggregator
        self.cache = cache or TTLCache(settings.click_time_cache_ttl, clock=clock)
        self.timeout = timeout if timeout is not None else settings.click_time_timeout
        self.block_threshold = block_threshold
        self.warn_threshold = warn_threshold

    def action_for(self, score: int) -> str:
        if score >= self.block_threshold:
            return "block"
        if score >= self.warn_threshold:
            return "warn"
        return "allow"

    async def check(self, url: str) -> ClickTimeVerdict:
        key = normalize_indicator(url)
        cached = self.cache.get(key)
        if cached is not None:
            return replace(cached, from_cache=True)

        try:
            intel = await asyncio.wait_for(self.aggregator.check(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Click-time check timed out after {self.timeout}s for {url[:80]}")
            return ClickTimeVerdict(
                url=url,
                action="allow",
                risk_score=0,
                timed_out=True,
                reason=f"Reputation check did not finish within {self.timeout}s",
                signals=[Signal(
                    type=ThreatIntelSignalType.CHECK_TIMEOUT,
                    severity=Severity.INFO,
                    score=0,
                    detail="Click-time URL check timed out",
                    metadata={"url": url, "timeout_seconds": self.timeout},
                )],
            )

        action = self.action_for(intel.consensus_score)
        verdict = ClickTimeVerdict(
            url=url,
            action=action,
            risk_score=intel.consensus_score,
            reason=(
                f"Consensus {intel.consensus_score}/100 from "
                f"{len(intel.responding_sources)} feeds"
            ),
            threat_intel=intel,
            signals=threat_intel_signals(intel),
        )
        if action != "allow":
            logger.info(f"Click-time {action} for {url[:80]} (score {intel.consensus_score})")

        if not intel.responding_sources and intel.failed_sources:
            # every feed failed; re-check on the next click
            return verdict
        self.cache.set(key, verdict)
        return verdict

    def clear_expired(self) -> int:
        """Sweep expired verdicts; returns how many were removed."""
        return self.cache.evict_expired()
