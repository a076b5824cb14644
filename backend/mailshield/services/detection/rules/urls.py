"""
MailShield URL Detection Rules

Context-aware URL scoring: each link is classified, its score scaled by
the classification's trust multiplier, and only links with a non-zero
adjusted score become signals.
"""

from typing import Iterable, List, Optional

from mailshield.models.email import ParsedEmail
from mailshield.models.signals import Severity, Signal, URLSignalType
from mailshield.models.url import TrustLevel, URLClassification, URLType
from mailshield.services.url_intel.classifier import classify_url, get_url_score_multiplier

from .base import DetectionRule, RuleContext, register_rule


def classification_to_signal(classification: URLClassification) -> Optional[Signal]:
    """Scaled signal for one classified URL, None when it contributes nothing."""
    if classification.type == URLType.TRACKING and classification.trust_level == TrustLevel.HIGH:
        return None

    multiplier = get_url_score_multiplier(classification)
    adjusted = int(round(classification.score * multiplier))
    if adjusted <= 0:
        return None

    if classification.type == URLType.MALICIOUS:
        signal_type, severity = URLSignalType.MALICIOUS_URL, Severity.CRITICAL
    elif classification.type in (URLType.SHORTENER, URLType.REDIRECT):
        signal_type, severity = URLSignalType.SHORTENED_URL, Severity.INFO
    elif classification.type == URLType.TRACKING:
        signal_type, severity = URLSignalType.TRACKING_URL, Severity.INFO
    else:
        signal_type, severity = URLSignalType.SUSPICIOUS_URL, Severity.WARNING

    metadata = {
        "url": classification.url,
        "url_type": classification.type.value,
        "trust_level": classification.trust_level.value,
        "original_score": classification.score,
        "multiplier": multiplier,
    }
    metadata.update(classification.metadata)
    return Signal(
        type=signal_type,
        severity=severity,
        score=adjusted,
        detail=classification.reason,
        metadata=metadata,
    )


def analyze_urls(
    urls: Iterable[str],
    sender_domain: str = "",
    known_tracking_domains: Optional[Iterable[str]] = None,
) -> List[Signal]:
    known = list(known_tracking_domains or [])
    signals = []
    for url in urls:
        signal = classification_to_signal(classify_url(url, sender_domain, known))
        if signal is not None:
            signals.append(signal)
    return signals


@register_rule
class URLClassificationRule(DetectionRule):
    """Score every link in the email by classification and trust."""

    rule_id = "URL-001"
    name = "URL Classification"
    category = "url"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        return analyze_urls(
            self.get_urls(email),
            self.get_sender_domain(email) or "",
            context.known_tracking_domains,
        )
