"""
MailShield Signal Models

Shared vocabulary for every detection layer: signal types, severities,
the immutable Signal evidence unit and per-layer results.
"""

from enum import Enum
from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Signal severity."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class LayerName(str, Enum):
    """Analysis layers that produce a LayerResult."""
    DETERMINISTIC = "deterministic"
    URL_INTELLIGENCE = "url_intelligence"
    THREAT_INTEL = "threat_intel"
    IMPERSONATION = "impersonation"
    ANOMALY = "anomaly"
    DOMAIN_AGE = "domain_age"
    ATO = "ato"


class DeterministicSignalType(str, Enum):
    """Header, sender and content rule signals."""
    SPF = "spf"
    DKIM = "dkim"
    DMARC = "dmarc"
    FREE_EMAIL_PROVIDER = "free_email_provider"
    DISPOSABLE_EMAIL = "disposable_email"
    HOMOGLYPH = "homoglyph"
    COUSIN_DOMAIN = "cousin_domain"
    DISPLAY_NAME_SPOOF = "display_name_spoof"
    REPLY_TO_MISMATCH = "reply_to_mismatch"
    HEADER_ANOMALY = "header_anomaly"
    URGENCY_LANGUAGE = "urgency_language"
    FINANCIAL_REQUEST = "financial_request"
    CREDENTIAL_REQUEST = "credential_request"


class URLSignalType(str, Enum):
    """URL classification, intelligence, redirect and domain-age signals."""
    MALICIOUS_URL = "malicious_url"
    SUSPICIOUS_URL = "suspicious_url"
    SHORTENED_URL = "shortened_url"
    TRACKING_URL = "tracking_url"
    LOOKALIKE_DOMAIN = "lookalike_domain"
    URL_OBFUSCATION = "url_obfuscation"
    URL_PARSE_ERROR = "url_parse_error"
    NEW_DOMAIN = "new_domain"
    REDIRECT_CHAIN_RISK = "redirect_chain_risk"
    PROTOCOL_DOWNGRADE = "protocol_downgrade"
    SUSPICIOUS_TLD_REDIRECT = "suspicious_tld_redirect"
    REDIRECT_TO_IP = "redirect_to_ip"
    REPUTATION_DECLINE = "reputation_decline"
    CLOAKING_REDIRECT = "cloaking_redirect"
    DOMAIN_AGE_BEC_CORRELATION = "domain_age_bec_correlation"
    DOMAIN_AGE_LOOKALIKE_CORRELATION = "domain_age_lookalike_correlation"
    NEW_DOMAIN_IN_LINKS = "new_domain_in_links"
    COMPOUND_DOMAIN_RISK = "compound_domain_risk"
    SUSPICIOUS_REGISTRATION = "suspicious_registration"


class ThreatIntelSignalType(str, Enum):
    """Signals derived from external reputation feeds."""
    THREAT_INTEL_CONSENSUS = "threat_intel_consensus"
    THREAT_INTEL_MALWARE = "threat_intel_malware"
    THREAT_INTEL_TAGS = "threat_intel_tags"
    THREAT_INTEL_HIGH_CONFIDENCE = "threat_intel_high_confidence"
    THREAT_INTEL_DISAGREEMENT = "threat_intel_disagreement"
    CHECK_TIMEOUT = "check_timeout"
    FEED_ERROR = "feed_error"


class AnomalySignalType(str, Enum):
    """Behavioral anomaly signals, one per dimension."""
    VOLUME_ANOMALY = "volume_anomaly"
    TIME_ANOMALY = "time_anomaly"
    RECIPIENT_ANOMALY = "recipient_anomaly"
    CONTENT_ANOMALY = "content_anomaly"


class ImpersonationSignalType(str, Enum):
    """BEC impersonation signals."""
    VIP_DISPLAY_NAME_SPOOF = "bec_display_name_spoof"
    TITLE_SPOOF = "bec_title_spoof"
    FREE_EMAIL_EXECUTIVE = "bec_free_email_executive"
    REPLY_TO_MISMATCH = "bec_reply_to_mismatch"
    COUSIN_DOMAIN = "bec_cousin_domain"
    UNICODE_SPOOF = "unicode_spoof"
    VIP_LOOKUP_FAILED = "vip_lookup_failed"


class ATOSignalType(str, Enum):
    """Account-takeover signals from the login path."""
    IMPOSSIBLE_TRAVEL = "impossible_travel"
    MISSING_GEO_DATA = "missing_geo_data"


SignalType = Union[
    DeterministicSignalType,
    URLSignalType,
    ThreatIntelSignalType,
    AnomalySignalType,
    ImpersonationSignalType,
    ATOSignalType,
]

SIGNAL_TYPE_ENUMS = (
    DeterministicSignalType,
    URLSignalType,
    ThreatIntelSignalType,
    AnomalySignalType,
    ImpersonationSignalType,
    ATOSignalType,
)


def parse_signal_type(value: str) -> SignalType:
    """Resolve a raw type string to its enum member."""
    for enum_cls in SIGNAL_TYPE_ENUMS:
        try:
            return enum_cls(value)
        except ValueError:
            continue
    raise ValueError(f"Unknown signal type: {value}")


class Signal(BaseModel):
    """Atomic, immutable unit of detection evidence."""
    model_config = ConfigDict(frozen=True)

    type: SignalType = Field(..., description="Signal type from a closed per-layer vocabulary")
    severity: Severity = Field(..., description="info, warning or critical")
    score: int = Field(..., ge=0, description="Non-negative score contribution")
    detail: str = Field(..., description="Human-readable explanation")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Provenance key/value bag")

    @property
    def type_name(self) -> str:
        return self.type.value

    def derive(self, **changes: Any) -> "Signal":
        """Return a new Signal with the given fields replaced."""
        data = {
            "type": self.type,
            "severity": self.severity,
            "score": self.score,
            "detail": self.detail,
            "metadata": dict(self.metadata),
        }
        data.update(changes)
        return Signal(**data)


class LayerResult(BaseModel):
    """Output of one analysis layer."""
    layer: LayerName = Field(..., description="Layer that produced the result")
    score: int = Field(..., ge=0, le=100, description="Aggregate layer score 0-100")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Layer confidence 0-1")
    signals: List[Signal] = Field(default_factory=list)
    processing_time_ms: float = Field(0.0, ge=0.0, description="Wall-clock processing time")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def signal_count(self) -> int:
        return len(self.signals)
