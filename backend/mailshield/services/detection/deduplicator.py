"""
MailShield Signal Deduplicator

Collapses repeated signals so that, for example, six tracking links from
one newsletter count once instead of six times.

Grouping:
    - URL/link signals are grouped by type alone and keep a sample of
      the underlying URLs.
    - Everything else is grouped by ``type:severity``.

Within a group of more than one signal the highest-scoring
``max_per_group`` signals are kept and annotated with
``duplicate_count``. Inputs are never mutated. Running the deduplicator
on its own output returns that output unchanged.
"""

import re
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List

from mailshield.models.signals import (
    DeterministicSignalType,
    ImpersonationSignalType,
    Signal,
)

logger = logging.getLogger(__name__)

MAX_SAMPLE_URLS = 10
DUPLICATE_SUFFIX = re.compile(r" \(×\d+(?: URLs)?\)$")


def is_url_signal(signal: Signal) -> bool:
    name = signal.type_name
    return "url" in name or "link" in name


def group_key(signal: Signal) -> str:
    if is_url_signal(signal):
        return f"url:{signal.type_name}"
    return f"{signal.type_name}:{signal.severity.value}"


def _multiplicity(group: List[Signal]) -> int:
    """Signals represented by the group, counting earlier merges once."""
    merged_counts = [s.metadata["duplicate_count"] for s in group if "duplicate_count" in s.metadata]
    plain = len(group) - len(merged_counts)
    return (max(merged_counts) if merged_counts else 0) + plain


def _collect_urls(group: List[Signal]) -> List[str]:
    urls: List[str] = []
    for signal in group:
        if "urls" in signal.metadata:
            candidates = list(signal.metadata["urls"])
        else:
            candidates = [signal.metadata.get("url") or signal.detail]
        for url in candidates:
            if url and url not in urls:
                urls.append(url)
    return urls


def _merge(group: List[Signal], max_per_group: int) -> List[Signal]:
    ranked = sorted(group, key=lambda s: s.score, reverse=True)
    count = _multiplicity(group)
    url_group = is_url_signal(group[0])
    urls = _collect_urls(group) if url_group else []

    merged = []
    for signal in ranked[:max_per_group]:
        detail = DUPLICATE_SUFFIX.sub("", signal.detail)
        metadata: Dict[str, Any] = dict(signal.metadata)
        metadata["duplicate_count"] = count
        if url_group:
            detail = f"{detail} (×{count} URLs)"
            metadata["urls"] = urls[:MAX_SAMPLE_URLS]
            metadata["has_more"] = count > MAX_SAMPLE_URLS
            metadata["total_urls"] = count
        else:
            detail = f"{detail} (×{count})"
        merged.append(signal.derive(detail=detail, metadata=metadata))
    return merged


def _already_merged(group: List[Signal], max_per_group: int) -> bool:
    return len(group) <= max_per_group and all("duplicate_count" in s.metadata for s in group)


def deduplicate_signals(signals: List[Signal], max_per_group: int = 1) -> List[Signal]:
    """
    Collapse duplicate signals.

    Groups are emitted in order of first appearance; singleton groups
    pass through unchanged.
    """
    if max_per_group < 1:
        raise ValueError("max_per_group must be >= 1")

    groups: "OrderedDict[str, List[Signal]]" = OrderedDict()
    for signal in signals:
        groups.setdefault(group_key(signal), []).append(signal)

    result: List[Signal] = []
    for key, group in groups.items():
        if len(group) == 1 or _already_merged(group, max_per_group):
            result.extend(group)
            continue
        result.extend(_merge(group, max_per_group))
        logger.debug(f"Collapsed {len(group)} signals in group {key}")
    return result


# =============================================================================
# Reporting helpers
# =============================================================================

AUTHENTICATION_TYPES = {
    DeterministicSignalType.SPF,
    DeterministicSignalType.DKIM,
    DeterministicSignalType.DMARC,
}

SENDER_TYPES = {
    DeterministicSignalType.FREE_EMAIL_PROVIDER,
    DeterministicSignalType.DISPOSABLE_EMAIL,
    DeterministicSignalType.HOMOGLYPH,
    DeterministicSignalType.COUSIN_DOMAIN,
    DeterministicSignalType.DISPLAY_NAME_SPOOF,
    DeterministicSignalType.REPLY_TO_MISMATCH,
    DeterministicSignalType.HEADER_ANOMALY,
    *ImpersonationSignalType,
}

CONTENT_TYPES = {
    DeterministicSignalType.URGENCY_LANGUAGE,
    DeterministicSignalType.FINANCIAL_REQUEST,
    DeterministicSignalType.CREDENTIAL_REQUEST,
}


def signal_category(signal: Signal) -> str:
    if signal.type in AUTHENTICATION_TYPES:
        return "authentication"
    if signal.type in SENDER_TYPES:
        return "sender"
    if signal.type in CONTENT_TYPES:
        return "content"
    if is_url_signal(signal):
        return "url"
    return "other"


@dataclass
class SignalGroup:
    category: str
    signals: List[Signal] = field(default_factory=list)

    @property
    def total_score(self) -> int:
        return sum(s.score for s in self.signals)

    @property
    def count(self) -> int:
        return len(self.signals)

    @property
    def deduplicated_count(self) -> int:
        return sum(1 for s in self.signals if s.metadata.get("duplicate_count", 0) > 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "total_score": self.total_score,
            "count": self.count,
            "deduplicated_count": self.deduplicated_count,
            "signals": [s.model_dump(mode="json") for s in self.signals],
        }


def group_signals_by_category(signals: List[Signal]) -> List[SignalGroup]:
    """Group signals for display, highest total score first."""
    groups: Dict[str, SignalGroup] = {}
    for signal in signals:
        category = signal_category(signal)
        groups.setdefault(category, SignalGroup(category)).signals.append(signal)
    return sorted(groups.values(), key=lambda g: g.total_score, reverse=True)


@dataclass
class DeduplicationImpact:
    original_signal_count: int
    deduplicated_signal_count: int
    original_score: int
    deduplicated_score: int

    @property
    def score_reduction(self) -> int:
        return self.original_score - self.deduplicated_score

    @property
    def percent_reduction(self) -> float:
        if self.original_score <= 0:
            return 0.0
        return self.score_reduction / self.original_score * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_signal_count": self.original_signal_count,
            "deduplicated_signal_count": self.deduplicated_signal_count,
            "original_score": self.original_score,
            "deduplicated_score": self.deduplicated_score,
            "score_reduction": self.score_reduction,
            "percent_reduction": round(self.percent_reduction, 1),
        }


def calculate_deduplication_impact(
    original: List[Signal],
    deduplicated: List[Signal],
) -> DeduplicationImpact:
    return DeduplicationImpact(
        original_signal_count=len(original),
        deduplicated_signal_count=len(deduplicated),
        original_score=sum(s.score for s in original),
        deduplicated_score=sum(s.score for s in deduplicated),
    )
