"""
MailShield Signal Scoring

Converts signals into score contributions. Every member of every signal
enum must have an entry in CONTRIBUTION_POLICY; the table is checked at
import time so that a new signal type cannot be silently ignored.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List

from mailshield.models.signals import (
    SIGNAL_TYPE_ENUMS,
    ATOSignalType,
    AnomalySignalType,
    DeterministicSignalType,
    ImpersonationSignalType,
    LayerResult,
    Signal,
    SignalType,
    ThreatIntelSignalType,
    URLSignalType,
)
from mailshield.utils.constants import MAX_LAYER_SCORE
from mailshield.utils.exceptions import ScoringError
from mailshield.utils.helpers import clamp_score

logger = logging.getLogger(__name__)


class Contribution(str, Enum):
    """How a signal's score enters the total."""
    FULL = "full"
    INFORMATIONAL = "informational"  # recorded, never scored


CONTRIBUTION_POLICY: Dict[SignalType, Contribution] = {
    # Deterministic
    DeterministicSignalType.SPF: Contribution.FULL,
    DeterministicSignalType.DKIM: Contribution.FULL,
    DeterministicSignalType.DMARC: Contribution.FULL,
    DeterministicSignalType.FREE_EMAIL_PROVIDER: Contribution.FULL,
    DeterministicSignalType.DISPOSABLE_EMAIL: Contribution.FULL,
    DeterministicSignalType.HOMOGLYPH: Contribution.FULL,
    DeterministicSignalType.COUSIN_DOMAIN: Contribution.FULL,
    DeterministicSignalType.DISPLAY_NAME_SPOOF: Contribution.FULL,
    DeterministicSignalType.REPLY_TO_MISMATCH: Contribution.FULL,
    DeterministicSignalType.HEADER_ANOMALY: Contribution.FULL,
    DeterministicSignalType.URGENCY_LANGUAGE: Contribution.FULL,
    DeterministicSignalType.FINANCIAL_REQUEST: Contribution.FULL,
    DeterministicSignalType.CREDENTIAL_REQUEST: Contribution.FULL,
    # URL intelligence
    URLSignalType.MALICIOUS_URL: Contribution.FULL,
    URLSignalType.SUSPICIOUS_URL: Contribution.FULL,
    URLSignalType.SHORTENED_URL: Contribution.FULL,
    URLSignalType.TRACKING_URL: Contribution.FULL,
    URLSignalType.LOOKALIKE_DOMAIN: Contribution.FULL,
    URLSignalType.URL_OBFUSCATION: Contribution.FULL,
    URLSignalType.URL_PARSE_ERROR: Contribution.FULL,
    URLSignalType.NEW_DOMAIN: Contribution.FULL,
    URLSignalType.REDIRECT_CHAIN_RISK: Contribution.FULL,
    URLSignalType.PROTOCOL_DOWNGRADE: Contribution.FULL,
    URLSignalType.SUSPICIOUS_TLD_REDIRECT: Contribution.FULL,
    URLSignalType.REDIRECT_TO_IP: Contribution.FULL,
    URLSignalType.REPUTATION_DECLINE: Contribution.FULL,
    URLSignalType.CLOAKING_REDIRECT: Contribution.FULL,
    URLSignalType.DOMAIN_AGE_BEC_CORRELATION: Contribution.FULL,
    URLSignalType.DOMAIN_AGE_LOOKALIKE_CORRELATION: Contribution.FULL,
    URLSignalType.NEW_DOMAIN_IN_LINKS: Contribution.FULL,
    URLSignalType.COMPOUND_DOMAIN_RISK: Contribution.FULL,
    URLSignalType.SUSPICIOUS_REGISTRATION: Contribution.FULL,
    # Threat intel
    ThreatIntelSignalType.THREAT_INTEL_CONSENSUS: Contribution.FULL,
    ThreatIntelSignalType.THREAT_INTEL_MALWARE: Contribution.FULL,
    ThreatIntelSignalType.THREAT_INTEL_TAGS: Contribution.FULL,
    ThreatIntelSignalType.THREAT_INTEL_HIGH_CONFIDENCE: Contribution.FULL,
    ThreatIntelSignalType.THREAT_INTEL_DISAGREEMENT: Contribution.FULL,
    ThreatIntelSignalType.CHECK_TIMEOUT: Contribution.INFORMATIONAL,
    ThreatIntelSignalType.FEED_ERROR: Contribution.INFORMATIONAL,
    # Behavioral
    AnomalySignalType.VOLUME_ANOMALY: Contribution.FULL,
    AnomalySignalType.TIME_ANOMALY: Contribution.FULL,
    AnomalySignalType.RECIPIENT_ANOMALY: Contribution.FULL,
    AnomalySignalType.CONTENT_ANOMALY: Contribution.FULL,
    # Impersonation
    ImpersonationSignalType.VIP_DISPLAY_NAME_SPOOF: Contribution.FULL,
    ImpersonationSignalType.TITLE_SPOOF: Contribution.FULL,
    ImpersonationSignalType.FREE_EMAIL_EXECUTIVE: Contribution.FULL,
    ImpersonationSignalType.REPLY_TO_MISMATCH: Contribution.FULL,
    ImpersonationSignalType.COUSIN_DOMAIN: Contribution.FULL,
    ImpersonationSignalType.UNICODE_SPOOF: Contribution.FULL,
    ImpersonationSignalType.VIP_LOOKUP_FAILED: Contribution.INFORMATIONAL,
    # Account takeover
    ATOSignalType.IMPOSSIBLE_TRAVEL: Contribution.FULL,
    ATOSignalType.MISSING_GEO_DATA: Contribution.INFORMATIONAL,
}


def _check_policy_is_exhaustive() -> None:
    missing = [
        f"{enum_cls.__name__}.{member.name}"
        for enum_cls in SIGNAL_TYPE_ENUMS
        for member in enum_cls
        if member not in CONTRIBUTION_POLICY
    ]
    if missing:
        raise ScoringError(f"Signal types without a scoring policy: {', '.join(missing)}")


_check_policy_is_exhaustive()


def signal_contribution(signal: Signal) -> int:
    """Points a signal adds to its layer score."""
    policy = CONTRIBUTION_POLICY.get(signal.type)
    if policy is None:
        raise ScoringError(f"No scoring policy for signal type '{signal.type_name}'")
    if policy == Contribution.INFORMATIONAL:
        return 0
    return signal.score


def score_signals(signals: Iterable[Signal]) -> int:
    """Sum of contributions saturated at 100."""
    return min(MAX_LAYER_SCORE, sum(signal_contribution(s) for s in signals))


def combine_layers(layers: List[LayerResult]) -> int:
    """Total risk across layers: summed and capped at 100."""
    total = sum(layer.score for layer in layers)
    return clamp_score(total)
