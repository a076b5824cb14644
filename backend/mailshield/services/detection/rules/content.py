"""
MailShield Content Detection Rules

Urgency, financial-request and credential-request language in the
subject and body.
"""

import re
from typing import List

from mailshield.models.email import ParsedEmail
from mailshield.models.signals import DeterministicSignalType, Severity, Signal
from mailshield.utils.constants import (
    CREDENTIAL_PATTERNS,
    FINANCIAL_PATTERNS,
    URGENCY_PATTERNS,
)

from .base import DetectionRule, RuleContext, register_rule


URGENCY_REGEXES = [re.compile(p, re.I) for p in URGENCY_PATTERNS]
FINANCIAL_REGEXES = [re.compile(p, re.I) for p in FINANCIAL_PATTERNS]
CREDENTIAL_REGEXES = [re.compile(p, re.I) for p in CREDENTIAL_PATTERNS]

MIN_URGENCY_MATCHES = 2


def matching_patterns(text: str, regexes: List["re.Pattern"]) -> List[str]:
    """Source of every pattern that matches text at least once."""
    return [r.pattern for r in regexes if r.search(text)]


@register_rule
class UrgencyLanguageRule(DetectionRule):
    """Multiple distinct urgency phrases."""

    rule_id = "CONTENT-001"
    name = "Urgency Language"
    category = "content"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        matches = matching_patterns(self.get_content_text(email), URGENCY_REGEXES)
        if len(matches) < MIN_URGENCY_MATCHES:
            return []
        return [Signal(
            type=DeterministicSignalType.URGENCY_LANGUAGE,
            severity=Severity.WARNING,
            score=15,
            detail=f"Multiple urgency indicators detected ({len(matches)} patterns)",
            metadata={"pattern_count": len(matches)},
        )]


@register_rule
class FinancialRequestRule(DetectionRule):
    """Wire transfer, gift card, crypto or invoice payment requests."""

    rule_id = "CONTENT-002"
    name = "Financial Request"
    category = "content"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        matches = matching_patterns(self.get_content_text(email), FINANCIAL_REGEXES)
        if not matches:
            return []
        return [Signal(
            type=DeterministicSignalType.FINANCIAL_REQUEST,
            severity=Severity.CRITICAL,
            score=35,
            detail="Email contains financial request language",
            metadata={"pattern_count": len(matches)},
        )]


@register_rule
class CredentialRequestRule(DetectionRule):
    """Requests for passwords, logins or other secrets."""

    rule_id = "CONTENT-003"
    name = "Credential Request"
    category = "content"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        matches = matching_patterns(self.get_content_text(email), CREDENTIAL_REGEXES)
        if not matches:
            return []
        return [Signal(
            type=DeterministicSignalType.CREDENTIAL_REQUEST,
            severity=Severity.CRITICAL,
            score=40,
            detail="Email requests credentials or sensitive information",
            metadata={"pattern_count": len(matches)},
        )]
