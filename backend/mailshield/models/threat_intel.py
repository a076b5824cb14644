"""
MailShield Threat Intelligence Models

Per-feed lookups and the reliability-weighted consensus across feeds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .signals import Signal


class FeedVerdict(str, Enum):
    """Verdict reported by a single feed."""
    CLEAN = "clean"
    UNKNOWN = "unknown"
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"


class IndicatorType(str, Enum):
    URL = "url"
    DOMAIN = "domain"
    IP = "ip"


@dataclass
class FeedLookup:
    """What a feed client returns for one indicator."""
    verdict: FeedVerdict
    score: int  # 0-100
    reliability: float  # static per-feed weight 0-1
    malware_family: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    raw_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceResult:
    """Outcome of querying one feed, including failures."""
    source: str
    available: bool = True
    verdict: FeedVerdict = FeedVerdict.UNKNOWN
    score: Optional[int] = None
    reliability: float = 0.0
    malware_family: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    error: Optional[str] = None
    timed_out: bool = False
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "available": self.available,
            "verdict": self.verdict.value,
            "score": self.score,
            "reliability": self.reliability,
            "malware_family": self.malware_family,
            "tags": self.tags,
            "error": self.error,
            "timed_out": self.timed_out,
            "latency_ms": round(self.latency_ms, 2),
        }


@dataclass
class ThreatIntelResult:
    """Consensus across feeds for one indicator."""
    indicator: str
    indicator_type: IndicatorType = IndicatorType.URL
    sources: Dict[str, SourceResult] = field(default_factory=dict)
    consensus_score: int = 0  # 0-100, reliability-weighted
    consensus_verdict: FeedVerdict = FeedVerdict.UNKNOWN
    confidence: float = 0.0  # 0-1, from inter-source agreement
    agreement_ratio: float = 0.0
    disagreement: bool = False
    from_cache: bool = False
    checked_at: Optional[datetime] = None

    @property
    def responding_sources(self) -> List[SourceResult]:
        return [s for s in self.sources.values() if s.available]

    @property
    def failed_sources(self) -> List[SourceResult]:
        return [s for s in self.sources.values() if not s.available]

    @property
    def malware_families(self) -> List[str]:
        families = []
        for source in self.responding_sources:
            if source.malware_family and source.malware_family not in families:
                families.append(source.malware_family)
        return families

    @property
    def tags(self) -> List[str]:
        tags: List[str] = []
        for source in self.responding_sources:
            for tag in source.tags:
                if tag not in tags:
                    tags.append(tag)
        return tags

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indicator": self.indicator,
            "indicator_type": self.indicator_type.value,
            "consensus_score": self.consensus_score,
            "consensus_verdict": self.consensus_verdict.value,
            "confidence": self.confidence,
            "agreement_ratio": self.agreement_ratio,
            "disagreement": self.disagreement,
            "from_cache": self.from_cache,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "sources": {k: v.to_dict() for k, v in self.sources.items()},
        }


@dataclass
class ClickTimeVerdict:
    """Decision for a URL at click time."""
    url: str
    action: str  # allow, warn, block
    risk_score: int
    from_cache: bool = False
    timed_out: bool = False
    reason: str = ""
    threat_intel: Optional[ThreatIntelResult] = None
    signals: List[Signal] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "action": self.action,
            "risk_score": self.risk_score,
            "from_cache": self.from_cache,
            "timed_out": self.timed_out,
            "reason": self.reason,
            "threat_intel": self.threat_intel.to_dict() if self.threat_intel else None,
            "signals": [s.model_dump(mode="json") for s in self.signals],
        }
