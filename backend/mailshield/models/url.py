"""
MailShield URL Intelligence Models

Pydantic models for URL classification, lookalike, obfuscation,
redirect-chain and domain-age analysis.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .signals import Signal


class URLType(str, Enum):
    """Classifier verdict for a single URL."""
    MALICIOUS = "malicious"
    REDIRECT = "redirect"
    TRACKING = "tracking"
    SHORTENER = "shortener"
    SAFE = "safe"


class TrustLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class URLVerdict(str, Enum):
    SAFE = "safe"
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"


class URLClassification(BaseModel):
    """Classification of one URL before the trust multiplier is applied."""
    url: str
    type: URLType
    trust_level: TrustLevel
    score: int = Field(..., ge=0, le=10, description="Pre-multiplier score 0-10")
    reason: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class URLAnalysisSummary(BaseModel):
    """Aggregate over a batch of classified URLs."""
    total: int
    by_type: Dict[str, int]
    by_trust_level: Dict[str, int]
    classifications: List[URLClassification]
    average_score: float
    max_score: int
    suspicious_count: int


class LookalikeResult(BaseModel):
    domain: str
    is_lookalike: bool = False
    target_domain: Optional[str] = None
    technique: Optional[str] = None
    risk_score: int = Field(0, ge=0, le=10)
    signals: List[str] = Field(default_factory=list)


class ObfuscationResult(BaseModel):
    url: str
    is_obfuscated: bool = False
    technique: Optional[str] = None
    risk_score: int = Field(0, ge=0, le=10)
    signals: List[str] = Field(default_factory=list)
    decoded_url: Optional[str] = None


class RedirectHop(BaseModel):
    """One hop of a resolved redirect chain."""
    url: str
    status_code: int = 200
    reputation: Optional[float] = Field(None, ge=0, le=100, description="0 (bad) - 100 (good)")
    user_agent: Optional[str] = None


class RedirectAnalysis(BaseModel):
    hop_count: int = 0
    shortener_count: int = 0
    unique_domains: int = 0
    is_suspicious: bool = False
    has_protocol_downgrade: bool = False
    has_suspicious_tld_change: bool = False
    tld_changes: List[str] = Field(default_factory=list)
    ends_at_ip_address: bool = False
    reputation_decline: bool = False
    min_reputation: Optional[float] = None
    reputation_drop_percent: int = 0
    risk_score: int = Field(0, ge=0, le=10)
    signals: List[str] = Field(default_factory=list)
    final_destination: Optional[str] = None


class CloakingResult(BaseModel):
    is_cloaking: bool = False
    technique: Optional[str] = None
    evidence: Optional[str] = None


class WhoisData(BaseModel):
    """Registration facts supplied by an external WHOIS collaborator."""
    created_date: Optional[datetime] = None
    registrar: Optional[str] = None
    privacy_protected: bool = False


class DomainAgeResult(BaseModel):
    domain: str
    is_new_domain: bool = False
    age_days: int = -1
    risk_score: int = Field(0, ge=0, le=10)
    signals: List[str] = Field(default_factory=list)
    registrar: Optional[str] = None
    privacy_protected: bool = False


class DomainAgeRisk(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    SAFE = "safe"


class DomainAgeInfo(BaseModel):
    """Domain facts used to amplify already-present risk signals."""
    domain: str
    age_days: Optional[int] = Field(None, description="None when the age is unknown")
    reliability: float = Field(1.0, ge=0.0, le=1.0, description="Confidence in the age data")
    lookalike_target: Optional[str] = None
    in_email_links: bool = False


class DomainCorrelationResult(BaseModel):
    amplification_applied: bool = False
    amplification_multiplier: float = 1.0
    risk_level: DomainAgeRisk = DomainAgeRisk.SAFE
    correlated_signals: List[Signal] = Field(default_factory=list)
    original_signal_count: int = 0
    reason: Optional[str] = None


class CompoundDomainRiskResult(BaseModel):
    is_compound_threat: bool = False
    risk_multiplier: float = 1.0
    threat_pattern: Optional[str] = None
    signals: List[Signal] = Field(default_factory=list)


class RegistrationTimingResult(BaseModel):
    is_suspicious: bool = False
    suspicion_reason: Optional[str] = None
    risk_score: int = 0


class URLIntelligenceResult(BaseModel):
    url: str
    overall_risk_score: float = Field(0.0, ge=0.0, le=10.0)
    verdict: URLVerdict = URLVerdict.SAFE
    signals: List[str] = Field(default_factory=list)
    parse_error: bool = False
    domain_age: Optional[DomainAgeResult] = None
    lookalike: Optional[LookalikeResult] = None
    obfuscation: Optional[ObfuscationResult] = None
    redirect_chain: Optional[RedirectAnalysis] = None
    breakdown: Dict[str, float] = Field(default_factory=dict)
