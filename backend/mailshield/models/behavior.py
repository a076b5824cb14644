"""
MailShield Behavioral Models

Tenant baselines, per-email behavior records, anomaly results and
analyst feedback.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AnomalyType(str, Enum):
    """Behavioral dimensions."""
    VOLUME = "volume"
    TIME = "time"
    RECIPIENT = "recipient"
    CONTENT = "content"


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FeedbackType(str, Enum):
    FALSE_POSITIVE = "false_positive"
    TRUE_POSITIVE = "true_positive"


class VolumeStats(BaseModel):
    mean: float = Field(..., ge=0)
    std_dev: float = Field(..., ge=0)


class TenantBaseline(BaseModel):
    """
    Statistical profile of a tenant's normal mail flow.

    Read-only to the detectors; a new baseline replaces the old one
    wholesale so mean and std_dev always come from the same sample.
    """
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    daily_email_volume: VolumeStats
    hourly_distribution: List[float] = Field(default_factory=lambda: [1 / 24] * 24)
    top_recipients: List[str] = Field(default_factory=list)
    top_senders: List[str] = Field(default_factory=list)
    known_recipient_domains: List[str] = Field(default_factory=list)
    subject_patterns: List[str] = Field(default_factory=list)
    weekend_activity: Optional[float] = Field(None, ge=0.0, le=1.0)
    calculated_at: Optional[datetime] = None

    @field_validator("hourly_distribution")
    @classmethod
    def _validate_distribution(cls, value: List[float]) -> List[float]:
        if len(value) != 24:
            raise ValueError("hourly_distribution must have 24 entries")
        if any(p < 0 for p in value):
            raise ValueError("hourly_distribution entries must be non-negative")
        total = sum(value)
        if total > 0 and abs(total - 1.0) > 0.01:
            raise ValueError(f"hourly_distribution must sum to 1 (got {total:.3f})")
        return value


class EmailBehaviorData(BaseModel):
    """Behavioral facts about one email."""
    tenant_id: str
    email_id: Optional[str] = None
    sender_email: str
    recipient_emails: List[str] = Field(default_factory=list)
    subject: str = ""
    sent_at: datetime
    daily_volume_for_sender: int = Field(0, ge=0)
    is_first_contact_with_recipient: bool = False


class VolumeAnomaly(BaseModel):
    z_score: float
    severity: AnomalySeverity
    actual_volume: int
    expected_volume: float


class TimeAnomaly(BaseModel):
    is_unusual_hour: bool
    hour_probability: float
    hour: int
    severity: AnomalySeverity
    is_weekend: bool = False
    is_unusual_weekend: bool = False


class RecipientAnomaly(BaseModel):
    has_new_recipient: bool
    has_new_domain: bool
    new_recipient_count: int
    new_domains: List[str] = Field(default_factory=list)
    severity: AnomalySeverity


class ContentAnomaly(BaseModel):
    has_unusual_subject: bool
    urgency_score: float
    all_caps_subject: bool
    excessive_punctuation: bool
    matches_known_pattern: bool = True
    severity: AnomalySeverity


class AnomalyResult(BaseModel):
    tenant_id: str
    email_id: Optional[str] = None
    has_anomaly: bool
    composite_score: int = Field(..., ge=0, le=100)
    raw_score: int = Field(0, ge=0, le=100, description="Composite before feedback adjustment")
    anomaly_types: List[AnomalyType] = Field(default_factory=list)
    volume_anomaly: Optional[VolumeAnomaly] = None
    time_anomaly: Optional[TimeAnomaly] = None
    recipient_anomaly: Optional[RecipientAnomaly] = None
    content_anomaly: Optional[ContentAnomaly] = None
    dimension_scores: Dict[str, float] = Field(
        default_factory=dict, description="Weighted, feedback-adjusted contribution per dimension",
    )
    feedback_adjustment: float = Field(0.0, description="Signed score delta learned from feedback")
    adjustment_version: int = 0
    should_alert: bool = False
    alert_severity: Optional[AnomalySeverity] = None
    detected_at: datetime


class AnomalyFeedback(BaseModel):
    """Analyst verdict on a previously flagged email."""
    tenant_id: str
    email_id: str
    feedback_type: FeedbackType
    anomaly_types: List[AnomalyType] = Field(..., min_length=1)
    provided_by: Optional[str] = None
    recorded_at: Optional[datetime] = None


class HistoricalSendRecord(BaseModel):
    """One historical email used to build a baseline."""
    sent_at: datetime
    sender: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
