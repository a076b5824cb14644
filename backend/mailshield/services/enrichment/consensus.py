"""
MailShield Threat Intelligence Consensus

Queries every configured feed for an indicator concurrently, each lookup
bounded by its own deadline, and folds the answers into a single
reliability-weighted verdict.

    consensus_score = sum(score_i * reliability_i) / sum(reliability_i)
    agreement_ratio = largest verdict bloc / participating feeds
    confidence      = unanimous (2+ feeds, one verdict):
                          floor + (1 - floor) * mean reliability
                      otherwise:
                          agreement_ratio * (0.5 + 0.5 * mean reliability)
                      (x1.1 with three or more feeds, capped at 1)
    disagreement    = split verdicts and confidence below threshold

Feeds that time out or fail are excluded from the consensus but kept in
``sources`` and reported as informational signals.
"""

import time
import asyncio
import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence

from mailshield.config.scoring import ConsensusConfig, get_scoring_config
from mailshield.config.settings import get_settings
from mailshield.models.signals import (
    LayerName,
    LayerResult,
    Severity,
    Signal,
    ThreatIntelSignalType,
)
from mailshield.models.threat_intel import (
    FeedLookup,
    FeedVerdict,
    IndicatorType,
    SourceResult,
    ThreatIntelResult,
)
from mailshield.services.detection.deduplicator import deduplicate_signals
from mailshield.services.detection.scoring import score_signals
from mailshield.utils.exceptions import FeedTimeoutError
from mailshield.utils.helpers import unique, utc_now

from .base import FeedClient, detect_indicator_type
from .cache import ThreatFeedCache

logger = logging.getLogger(__name__)


MALICIOUS_CONSENSUS = 70
SUSPICIOUS_CONSENSUS = 40
HIGH_CONFIDENCE_RELIABILITY = 0.8
HIGH_CONFIDENCE_SCORE = 80


# ============================================================================
# Consensus math
# ============================================================================

def weighted_consensus(sources: Sequence[SourceResult]) -> int:
    total_weight = sum(s.reliability for s in sources)
    if total_weight <= 0:
        return 0
    weighted = sum((s.score or 0) * s.reliability for s in sources)
    return round(weighted / total_weight)


def agreement_ratio(sources: Sequence[SourceResult]) -> float:
    if len(sources) <= 1:
        return 1.0 if sources else 0.0
    counts: Dict[FeedVerdict, int] = {}
    for source in sources:
        counts[source.verdict] = counts.get(source.verdict, 0) + 1
    return max(counts.values()) / len(sources)


def consensus_confidence(
    sources: Sequence[SourceResult],
    agreement: float,
    config: ConsensusConfig,
) -> float:
    if not sources:
        return 0.0
    avg_reliability = sum(s.reliability for s in sources) / len(sources)
    if len(sources) >= 2 and agreement >= 1.0:
        floor = config.unanimity_floor
        confidence = floor + (1.0 - floor) * avg_reliability
    else:
        confidence = agreement * (0.5 + 0.5 * avg_reliability)
    if len(sources) >= config.multi_source_minimum:
        confidence *= config.multi_source_bonus
    return round(min(1.0, confidence), 2)


def consensus_verdict(score: int, participating: int) -> FeedVerdict:
    if participating == 0:
        return FeedVerdict.UNKNOWN
    if score >= MALICIOUS_CONSENSUS:
        return FeedVerdict.MALICIOUS
    if score >= SUSPICIOUS_CONSENSUS:
        return FeedVerdict.SUSPICIOUS
    return FeedVerdict.CLEAN


# ============================================================================
# Aggregator
# ============================================================================

class ThreatIntelAggregator:
    """
    Multi-feed reputation lookups with consensus and caching.

    Usage:
        aggregator = ThreatIntelAggregator([URLhausClient(), PhishTankClient()])
        result = await aggregator.check("http://bad.example/login")
    """

    def __init__(
        self,
        feeds: Iterable[FeedClient],
        cache: Optional[ThreatFeedCache] = None,
        config: Optional[ConsensusConfig] = None,
        timeout: Optional[float] = None,
        feed_timeouts: Optional[Dict[str, float]] = None,
    ):
        settings = get_settings()
        self.feeds: List[FeedClient] = list(feeds)
        self.config = config or get_scoring_config().consensus
        self.config.validate()
        self.cache = cache or ThreatFeedCache(url_ttl=settings.threat_intel_cache_ttl)
        self.timeout = timeout if timeout is not None else settings.feed_timeout_seconds
        self.feed_timeouts = dict(feed_timeouts or {})

    def timeout_for(self, feed: FeedClient) -> float:
        return self.feed_timeouts.get(feed.name, self.timeout)

    def reliability_for(self, feed: FeedClient, lookup: Optional[FeedLookup] = None) -> float:
        """Configured weight first, then what the feed reports about itself."""
        if feed.name.lower() in self.config.feed_reliability:
            return self.config.reliability_for(feed.name)
        if lookup is not None and lookup.reliability:
            return lookup.reliability
        return getattr(feed, "reliability", None) or self.config.default_reliability

    async def check(self, indicator: str, force_refresh: bool = False) -> ThreatIntelResult:
        """
        Consensus for one indicator.

        Cached results are returned with ``from_cache=True`` without
        touching the feeds unless ``force_refresh`` is set.
        """
        kind = detect_indicator_type(indicator)
        if not force_refresh:
            cached = self.cache.get(indicator, kind)
            if cached is not None:
                return replace(cached, from_cache=True)

        outcomes = await asyncio.gather(
            *(self._query_feed(feed, indicator) for feed in self.feeds),
            return_exceptions=True,
        )

        sources: Dict[str, SourceResult] = {}
        for feed, outcome in zip(self.feeds, outcomes):
            if isinstance(outcome, BaseException):
                # _query_feed converts failures itself; this is a bug guard
                logger.error(f"Unexpected failure querying {feed.name}: {outcome}")
                outcome = SourceResult(source=feed.name, available=False, error=str(outcome))
            sources[feed.name] = outcome

        result = self._build_result(indicator, kind, sources)
        # Lookups where every feed failed are not cached
        if result.responding_sources or not result.failed_sources:
            self.cache.set(result)
        return result

    async def check_many(
        self,
        indicators: Iterable[str],
        force_refresh: bool = False,
    ) -> List[ThreatIntelResult]:
        return list(await asyncio.gather(
            *(self.check(i, force_refresh) for i in unique(indicators))
        ))

    async def _query_feed(self, feed: FeedClient, indicator: str) -> SourceResult:
        start = time.perf_counter()
        deadline = self.timeout_for(feed)
        try:
            lookup = await asyncio.wait_for(feed.lookup(indicator), timeout=deadline)
        except (asyncio.TimeoutError, FeedTimeoutError):
            logger.warning(f"Threat feed {feed.name} timed out after {deadline}s for {indicator[:80]}")
            return SourceResult(
                source=feed.name,
                available=False,
                timed_out=True,
                error=f"Timed out after {deadline}s",
                latency_ms=(time.perf_counter() - start) * 1000,
            )
        except Exception as e:
            logger.warning(f"Threat feed {feed.name} failed for {indicator[:80]}: {e}")
            return SourceResult(
                source=feed.name,
                available=False,
                error=str(e),
                latency_ms=(time.perf_counter() - start) * 1000,
            )

        return SourceResult(
            source=feed.name,
            verdict=lookup.verdict,
            score=max(0, min(100, lookup.score)),
            reliability=self.reliability_for(feed, lookup),
            malware_family=lookup.malware_family,
            tags=list(lookup.tags),
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    def _build_result(
        self,
        indicator: str,
        kind: IndicatorType,
        sources: Dict[str, SourceResult],
    ) -> ThreatIntelResult:
        participating = [
            s for s in sources.values()
            if s.available and s.verdict != FeedVerdict.UNKNOWN
        ]
        score = weighted_consensus(participating)
        agreement = agreement_ratio(participating)
        confidence = consensus_confidence(participating, agreement, self.config)
        disagreement = (
            len(participating) >= 2
            and agreement < 1.0
            and confidence < self.config.disagreement_threshold
        )

        if disagreement:
            logger.info(
                f"Threat feeds disagree on {indicator[:80]}: agreement={agreement:.2f}, "
                f"confidence={confidence}"
            )

        return ThreatIntelResult(
            indicator=indicator,
            indicator_type=kind,
            sources=sources,
            consensus_score=score,
            consensus_verdict=consensus_verdict(score, len(participating)),
            confidence=confidence,
            agreement_ratio=round(agreement, 2),
            disagreement=disagreement,
            checked_at=utc_now(),
        )

    async def analyze(self, indicators: Iterable[str]) -> LayerResult:
        """Threat-intel LayerResult over every indicator of an email."""
        start = time.perf_counter()
        results = await self.check_many(indicators)

        raw_signals: List[Signal] = []
        for result in results:
            raw_signals.extend(threat_intel_signals(result))
        signals = deduplicate_signals(raw_signals)

        confident = [r.confidence for r in results if r.responding_sources]
        confidence = round(sum(confident) / len(confident), 2) if confident else 0.0

        return LayerResult(
            layer=LayerName.THREAT_INTEL,
            score=score_signals(signals),
            confidence=confidence,
            signals=signals,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            metadata={
                "indicators_checked": len(results),
                "from_cache": sum(1 for r in results if r.from_cache),
            },
        )


# ============================================================================
# Signals
# ============================================================================

def threat_intel_signals(result: ThreatIntelResult) -> List[Signal]:
    """Convert a consensus result into signals, including failed feeds."""
    signals: List[Signal] = []
    responding = [s for s in result.responding_sources if s.verdict != FeedVerdict.UNKNOWN]

    if result.consensus_score > 0:
        if result.consensus_score >= 80:
            severity = Severity.CRITICAL
        elif result.consensus_score >= 50:
            severity = Severity.WARNING
        else:
            severity = Severity.INFO
        signals.append(Signal(
            type=ThreatIntelSignalType.THREAT_INTEL_CONSENSUS,
            severity=severity,
            score=round(result.consensus_score * 0.4),
            detail=(
                f"Threat intel consensus: {result.consensus_score}/100 "
                f"({len(responding)} sources)"
            ),
            metadata={
                "indicator": result.indicator,
                "consensus_score": result.consensus_score,
                "source_count": len(responding),
                "agreement_ratio": result.agreement_ratio,
                "confidence": result.confidence,
                "malware_families": result.malware_families,
                "tags": result.tags,
            },
        ))

    for source in responding:
        if source.malware_family:
            signals.append(Signal(
                type=ThreatIntelSignalType.THREAT_INTEL_MALWARE,
                severity=Severity.CRITICAL,
                score=35,
                detail=f"Malware family detected: {source.malware_family} ({source.source})",
                metadata={
                    "indicator": result.indicator,
                    "malware_family": source.malware_family,
                    "feed": source.source,
                },
            ))

        if source.tags:
            signals.append(Signal(
                type=ThreatIntelSignalType.THREAT_INTEL_TAGS,
                severity=Severity.WARNING,
                score=20,
                detail=f"Threat tags: {', '.join(source.tags)} ({source.source})",
                metadata={"indicator": result.indicator, "tags": list(source.tags), "feed": source.source},
            ))

        if (
            source.verdict == FeedVerdict.MALICIOUS
            and source.reliability >= HIGH_CONFIDENCE_RELIABILITY
            and (source.score or 0) >= HIGH_CONFIDENCE_SCORE
        ):
            signals.append(Signal(
                type=ThreatIntelSignalType.THREAT_INTEL_HIGH_CONFIDENCE,
                severity=Severity.CRITICAL,
                score=30,
                detail=f"High-confidence malicious verdict from {source.source} ({source.score}/100)",
                metadata={
                    "indicator": result.indicator,
                    "feed": source.source,
                    "score": source.score,
                    "reliability": source.reliability,
                },
            ))

    if result.disagreement:
        signals.append(Signal(
            type=ThreatIntelSignalType.THREAT_INTEL_DISAGREEMENT,
            severity=Severity.INFO,
            score=5,
            detail=f"Threat feeds disagree (agreement: {round(result.agreement_ratio * 100)}%)",
            metadata={"indicator": result.indicator, "agreement_ratio": result.agreement_ratio},
        ))

    for source in result.failed_sources:
        signal_type = (
            ThreatIntelSignalType.CHECK_TIMEOUT if source.timed_out
            else ThreatIntelSignalType.FEED_ERROR
        )
        signals.append(Signal(
            type=signal_type,
            severity=Severity.INFO,
            score=0,
            detail=f"{source.source} did not answer: {source.error}",
            metadata={"indicator": result.indicator, "feed": source.source, "error": source.error},
        ))

    return signals
