"""
MailShield Behavioral Anomaly Detector

Compares one email against its tenant's baseline across four dimensions:

- Volume:    z-score of the sender's daily volume against the baseline
- Time:      probability of the send hour; weekend sends for weekday tenants
- Recipient: recipients and recipient domains not seen before
- Content:   urgency wording, all-caps subjects, punctuation runs

Each active dimension contributes severity_score * weight to a 0-100
composite. False-positive feedback for a (tenant, dimension) pair dampens
that dimension's contribution by up to ``feedback_damping``.
"""

import re
import time
import logging
from typing import Dict, List, Optional, Tuple

from mailshield.config.scoring import AnomalyConfig, get_scoring_config
from mailshield.models.behavior import (
    AnomalyFeedback,
    AnomalyResult,
    AnomalySeverity,
    AnomalyType,
    ContentAnomaly,
    EmailBehaviorData,
    RecipientAnomaly,
    TenantBaseline,
    TimeAnomaly,
    VolumeAnomaly,
)
from mailshield.models.signals import AnomalySignalType, LayerName, LayerResult, Severity, Signal
from mailshield.utils.constants import ANOMALY_URGENCY_KEYWORDS
from mailshield.utils.helpers import clamp_score, ensure_aware, extract_domain_from_email, utc_now

from .feedback import AdjustmentTable, FeedbackLog, build_adjustment_table

logger = logging.getLogger(__name__)


# =============================================================================
# SEVERITY SCORES
# =============================================================================

VOLUME_SEVERITY_SCORES = {
    AnomalySeverity.LOW: 15,
    AnomalySeverity.MEDIUM: 40,
    AnomalySeverity.HIGH: 70,
    AnomalySeverity.CRITICAL: 95,
}

TIME_SEVERITY_SCORES = {
    AnomalySeverity.LOW: 20,
    AnomalySeverity.MEDIUM: 50,
    AnomalySeverity.HIGH: 80,
}

RECIPIENT_SEVERITY_SCORES = {
    AnomalySeverity.LOW: 20,
    AnomalySeverity.MEDIUM: 50,
    AnomalySeverity.HIGH: 80,
}

CONTENT_SEVERITY_SCORES = {
    AnomalySeverity.LOW: 20,
    AnomalySeverity.MEDIUM: 55,
    AnomalySeverity.HIGH: 85,
}

SIGNAL_TYPES = {
    AnomalyType.VOLUME: AnomalySignalType.VOLUME_ANOMALY,
    AnomalyType.TIME: AnomalySignalType.TIME_ANOMALY,
    AnomalyType.RECIPIENT: AnomalySignalType.RECIPIENT_ANOMALY,
    AnomalyType.CONTENT: AnomalySignalType.CONTENT_ANOMALY,
}

DIMENSION_ORDER = [AnomalyType.VOLUME, AnomalyType.TIME, AnomalyType.RECIPIENT, AnomalyType.CONTENT]

HIGH_HOUR_PROBABILITY = 0.005
MEDIUM_HOUR_PROBABILITY = 0.01

URGENCY_SATURATION = 3
PUNCTUATION_RUN = re.compile(r"[!?]{2,}")
URGENCY_PATTERNS = [
    re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE)
    for keyword in ANOMALY_URGENCY_KEYWORDS
]

ANOMALY_CONFIDENCE = 0.7


# =============================================================================
# DIMENSION CHECKS
# =============================================================================

def check_volume(
    email: EmailBehaviorData, baseline: TenantBaseline, z_threshold: float
) -> Optional[VolumeAnomaly]:
    """Volume z-score; None when the baseline has no spread to measure against."""
    stats = baseline.daily_email_volume
    if stats.std_dev == 0:
        return None

    z_score = (email.daily_volume_for_sender - stats.mean) / stats.std_dev

    if z_score >= z_threshold + 5:
        severity = AnomalySeverity.CRITICAL
    elif z_score >= z_threshold + 1:
        severity = AnomalySeverity.HIGH
    elif z_score >= z_threshold:
        severity = AnomalySeverity.MEDIUM
    else:
        severity = AnomalySeverity.LOW

    return VolumeAnomaly(
        z_score=round(z_score, 3),
        severity=severity,
        actual_volume=email.daily_volume_for_sender,
        expected_volume=stats.mean,
    )


def check_time(
    email: EmailBehaviorData,
    baseline: TenantBaseline,
    hour_threshold: float,
    weekend_threshold: float,
) -> TimeAnomaly:
    sent_at = ensure_aware(email.sent_at)
    hour = sent_at.hour
    probability = baseline.hourly_distribution[hour]
    is_unusual_hour = probability < hour_threshold

    is_weekend = sent_at.weekday() >= 5
    is_unusual_weekend = (
        is_weekend
        and baseline.weekend_activity is not None
        and baseline.weekend_activity < weekend_threshold
    )

    if is_unusual_hour and probability < HIGH_HOUR_PROBABILITY:
        severity = AnomalySeverity.HIGH
    elif is_unusual_hour and probability < MEDIUM_HOUR_PROBABILITY:
        severity = AnomalySeverity.MEDIUM
    else:
        severity = AnomalySeverity.LOW

    return TimeAnomaly(
        is_unusual_hour=is_unusual_hour,
        hour_probability=probability,
        hour=hour,
        severity=severity,
        is_weekend=is_weekend,
        is_unusual_weekend=is_unusual_weekend,
    )


def check_recipients(email: EmailBehaviorData, baseline: TenantBaseline) -> RecipientAnomaly:
    """
    New recipients are addresses outside the tenant's top recipients (or
    any recipient when the caller reports a first contact). Domains are
    only compared when the baseline knows some recipient domains.
    """
    known = {r.lower() for r in baseline.top_recipients}
    known_domains = {d.lower() for d in baseline.known_recipient_domains}

    new_recipients = []
    new_domains: List[str] = []
    for recipient in email.recipient_emails:
        address = recipient.lower()
        if email.is_first_contact_with_recipient or (known and address not in known):
            new_recipients.append(address)
        domain = extract_domain_from_email(address)
        if known_domains and domain and domain not in known_domains and domain not in new_domains:
            new_domains.append(domain)

    if len(new_recipients) >= 3 or len(new_domains) >= 2:
        severity = AnomalySeverity.HIGH
    elif len(new_recipients) >= 2 or new_domains:
        severity = AnomalySeverity.MEDIUM
    else:
        severity = AnomalySeverity.LOW

    return RecipientAnomaly(
        has_new_recipient=bool(new_recipients) or bool(new_domains),
        has_new_domain=bool(new_domains),
        new_recipient_count=len(new_recipients),
        new_domains=new_domains,
        severity=severity,
    )


def urgency_score(subject: str) -> float:
    hits = sum(1 for pattern in URGENCY_PATTERNS if pattern.search(subject))
    return min(hits / URGENCY_SATURATION, 1.0)


def check_content(
    email: EmailBehaviorData, baseline: TenantBaseline, urgency_threshold: float
) -> ContentAnomaly:
    subject = email.subject or ""
    urgency = urgency_score(subject)

    letters = [c for c in subject if c.isalpha()]
    all_caps = len(letters) > 5 and all(c.isupper() for c in letters)
    punctuation = bool(PUNCTUATION_RUN.search(subject))

    lowered = subject.lower()
    matches_pattern = (
        not baseline.subject_patterns
        or any(pattern.lower() in lowered for pattern in baseline.subject_patterns)
    )

    unusual = urgency >= urgency_threshold or all_caps or punctuation or not matches_pattern

    if urgency >= 0.8 or (all_caps and punctuation):
        severity = AnomalySeverity.HIGH
    elif urgency >= 0.5 or all_caps or punctuation:
        severity = AnomalySeverity.MEDIUM
    else:
        severity = AnomalySeverity.LOW

    return ContentAnomaly(
        has_unusual_subject=unusual,
        urgency_score=round(urgency, 3),
        all_caps_subject=all_caps,
        excessive_punctuation=punctuation,
        matches_known_pattern=matches_pattern,
        severity=severity,
    )


# =============================================================================
# DETECTOR
# =============================================================================

class AnomalyDetector:
    """
    Per-tenant behavioral anomaly detection with feedback learning.

    The config is validated here so a bad threshold fails at startup,
    not in the middle of scanning mail.
    """

    def __init__(
        self,
        config: Optional[AnomalyConfig] = None,
        feedback_log: Optional[FeedbackLog] = None,
    ):
        self.config = config or get_scoring_config().anomaly
        self.config.validate()
        self.feedback_log = feedback_log or FeedbackLog()
        self._adjustments = AdjustmentTable.empty()

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    def record_feedback(self, feedback: AnomalyFeedback) -> int:
        """Append analyst feedback; returns the new log version."""
        return self.feedback_log.append(feedback)

    @property
    def adjustments(self) -> AdjustmentTable:
        """Adjustment table, rebuilt whenever the log has grown."""
        if self._adjustments.version != self.feedback_log.version:
            self._adjustments = build_adjustment_table(self.feedback_log)
            logger.debug(f"Rebuilt anomaly adjustment table at version {self._adjustments.version}")
        return self._adjustments

    def dampening_for(self, tenant_id: str, dimension: AnomalyType, table: AdjustmentTable) -> float:
        """Multiplier in [1 - damping, 1] applied to a dimension's contribution."""
        entry = table.get(tenant_id, dimension)
        if entry is None or entry.sample_count < self.config.feedback_min_samples:
            return 1.0
        return 1.0 - entry.false_positive_rate * self.config.feedback_damping

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def _evaluate(
        self, email: EmailBehaviorData, baseline: TenantBaseline
    ) -> Tuple[Dict[str, object], Dict[AnomalyType, float]]:
        """Run enabled dimension checks; returns details and active dimension scores."""
        config = self.config
        details: Dict[str, object] = {}
        active: Dict[AnomalyType, float] = {}

        if config.enabled("volume"):
            volume = check_volume(email, baseline, config.volume_z_threshold)
            details["volume_anomaly"] = volume
            if volume is not None and volume.severity != AnomalySeverity.LOW:
                active[AnomalyType.VOLUME] = VOLUME_SEVERITY_SCORES[volume.severity]

        if config.enabled("time"):
            time_check = check_time(
                email, baseline,
                config.hour_probability_threshold,
                config.weekend_activity_threshold,
            )
            details["time_anomaly"] = time_check
            if time_check.is_unusual_hour or time_check.is_unusual_weekend:
                active[AnomalyType.TIME] = TIME_SEVERITY_SCORES[time_check.severity]

        if config.enabled("recipient"):
            recipients = check_recipients(email, baseline)
            details["recipient_anomaly"] = recipients
            if recipients.has_new_recipient:
                active[AnomalyType.RECIPIENT] = RECIPIENT_SEVERITY_SCORES[recipients.severity]

        if config.enabled("content"):
            content = check_content(email, baseline, config.urgency_threshold)
            details["content_anomaly"] = content
            if content.has_unusual_subject:
                active[AnomalyType.CONTENT] = CONTENT_SEVERITY_SCORES[content.severity]

        return details, active

    def _alert_severity(self, score: int) -> Optional[AnomalySeverity]:
        if score >= self.config.alert_threshold:
            return AnomalySeverity.CRITICAL
        if score >= 70:
            return AnomalySeverity.HIGH
        if score >= 50:
            return AnomalySeverity.MEDIUM
        if score >= self.config.anomaly_score_threshold:
            return AnomalySeverity.LOW
        return None

    def detect(self, email: EmailBehaviorData, baseline: TenantBaseline) -> AnomalyResult:
        """Score one email against its tenant baseline."""
        if baseline.tenant_id != email.tenant_id:
            logger.warning(
                f"Baseline tenant {baseline.tenant_id} does not match email tenant {email.tenant_id}"
            )

        details, active = self._evaluate(email, baseline)
        weights = self.config.weights.as_dict()
        table = self.adjustments

        raw_total = 0.0
        adjusted_total = 0.0
        contributions: Dict[str, float] = {}
        for dimension in DIMENSION_ORDER:
            if dimension not in active:
                continue
            raw = active[dimension] * weights[dimension.value]
            adjusted = raw * self.dampening_for(email.tenant_id, dimension, table)
            raw_total += raw
            adjusted_total += adjusted
            contributions[dimension.value] = round(adjusted, 2)

        raw_score = clamp_score(raw_total)
        composite = clamp_score(adjusted_total)
        anomaly_types = [d for d in DIMENSION_ORDER if d in active]

        alert_severity = self._alert_severity(composite)
        should_alert = composite >= self.config.alert_threshold

        if should_alert:
            logger.warning(
                f"Behavioral alert for tenant {email.tenant_id}: score {composite} "
                f"({', '.join(t.value for t in anomaly_types)})"
            )

        return AnomalyResult(
            tenant_id=email.tenant_id,
            email_id=email.email_id,
            has_anomaly=composite >= self.config.anomaly_score_threshold or bool(anomaly_types),
            composite_score=composite,
            raw_score=raw_score,
            anomaly_types=anomaly_types,
            dimension_scores=contributions,
            feedback_adjustment=round(adjusted_total - raw_total, 2),
            adjustment_version=table.version,
            should_alert=should_alert,
            alert_severity=alert_severity,
            detected_at=utc_now(),
            **details,
        )

    def analyze(self, email: EmailBehaviorData, baseline: TenantBaseline) -> LayerResult:
        """Run detection and wrap the outcome as the anomaly LayerResult."""
        start = time.time()
        result = self.detect(email, baseline)
        return LayerResult(
            layer=LayerName.ANOMALY,
            score=result.composite_score,
            confidence=ANOMALY_CONFIDENCE,
            signals=anomaly_signals(result),
            processing_time_ms=(time.time() - start) * 1000,
            metadata={
                "should_alert": result.should_alert,
                "feedback_adjustment": result.feedback_adjustment,
                "adjustment_version": result.adjustment_version,
            },
        )


# =============================================================================
# SIGNALS
# =============================================================================

def _signal_severity(severity: AnomalySeverity) -> Severity:
    if severity == AnomalySeverity.CRITICAL:
        return Severity.CRITICAL
    if severity == AnomalySeverity.LOW:
        return Severity.INFO
    return Severity.WARNING


def _describe(dimension: AnomalyType, result: AnomalyResult) -> Tuple[AnomalySeverity, str, dict]:
    if dimension == AnomalyType.VOLUME:
        v = result.volume_anomaly
        return v.severity, (
            f"Sender volume {v.actual_volume} is {v.z_score:.1f} standard deviations "
            f"above the expected {v.expected_volume:.1f}"
        ), {"z_score": v.z_score}
    if dimension == AnomalyType.TIME:
        t = result.time_anomaly
        if t.is_unusual_hour:
            detail = f"Sent at hour {t.hour}, which carries {t.hour_probability:.1%} of normal traffic"
        else:
            detail = "Sent on a weekend by a tenant with little weekend activity"
        return t.severity, detail, {"hour": t.hour, "hour_probability": t.hour_probability}
    if dimension == AnomalyType.RECIPIENT:
        r = result.recipient_anomaly
        detail = f"{r.new_recipient_count} new recipient(s)"
        if r.new_domains:
            detail += f", new domain(s): {', '.join(r.new_domains)}"
        return r.severity, detail, {"new_domains": list(r.new_domains)}
    c = result.content_anomaly
    parts = []
    if c.urgency_score:
        parts.append(f"urgency {c.urgency_score:.2f}")
    if c.all_caps_subject:
        parts.append("all-caps subject")
    if c.excessive_punctuation:
        parts.append("excessive punctuation")
    if not c.matches_known_pattern:
        parts.append("unfamiliar subject pattern")
    return c.severity, "Unusual subject: " + ", ".join(parts), {"urgency_score": c.urgency_score}


def anomaly_signals(result: AnomalyResult) -> List[Signal]:
    """One signal per active dimension, scored by its adjusted contribution."""
    signals = []
    for dimension in result.anomaly_types:
        severity, detail, metadata = _describe(dimension, result)
        signals.append(Signal(
            type=SIGNAL_TYPES[dimension],
            severity=_signal_severity(severity),
            score=int(round(result.dimension_scores.get(dimension.value, 0))),
            detail=detail,
            metadata={"dimension": dimension.value, "anomaly_severity": severity.value, **metadata},
        ))
    return signals
