"""
MailShield Authentication Detection Rules

SPF, DKIM and DMARC results read from the Authentication-Results header.
"""

import re
from typing import Dict, List, Optional

from mailshield.models.email import ParsedEmail
from mailshield.models.signals import DeterministicSignalType, Severity, Signal

from .base import DetectionRule, RuleContext, register_rule


AUTH_RESULT_PATTERNS = {
    "spf": re.compile(r"\bspf=(\w+)", re.I),
    "dkim": re.compile(r"\bdkim=(\w+)", re.I),
    "dmarc": re.compile(r"\bdmarc=(\w+)", re.I),
}


def parse_authentication_results(header: str) -> Dict[str, Optional[str]]:
    """Extract ``{"spf": ..., "dkim": ..., "dmarc": ...}`` (lowercased, None if absent)."""
    results: Dict[str, Optional[str]] = {}
    for mechanism, pattern in AUTH_RESULT_PATTERNS.items():
        match = pattern.search(header or "")
        results[mechanism] = match.group(1).lower() if match else None
    return results


class _AuthRule(DetectionRule):
    """Shared lookup of the parsed Authentication-Results header."""

    category = "authentication"
    mechanism = ""

    def get_result(self, email: ParsedEmail) -> Optional[str]:
        header = email.header("authentication-results") or ""
        return parse_authentication_results(header)[self.mechanism]


@register_rule
class SPFRule(_AuthRule):
    """Detect SPF authentication failures."""

    rule_id = "AUTH-001"
    name = "SPF Result"
    mechanism = "spf"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        result = self.get_result(email)
        if result == "fail":
            return [Signal(
                type=DeterministicSignalType.SPF,
                severity=Severity.WARNING,
                score=20,
                detail="SPF authentication failed - sender may be spoofed",
            )]
        if result == "softfail":
            return [Signal(
                type=DeterministicSignalType.SPF,
                severity=Severity.WARNING,
                score=10,
                detail="SPF soft fail - sender authenticity uncertain",
            )]
        if result == "pass":
            return [Signal(
                type=DeterministicSignalType.SPF,
                severity=Severity.INFO,
                score=0,
                detail="SPF authentication passed",
            )]
        return []


@register_rule
class DKIMRule(_AuthRule):
    """Detect DKIM signature failures."""

    rule_id = "AUTH-002"
    name = "DKIM Result"
    mechanism = "dkim"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        result = self.get_result(email)
        if result == "fail":
            return [Signal(
                type=DeterministicSignalType.DKIM,
                severity=Severity.WARNING,
                score=15,
                detail="DKIM signature verification failed",
            )]
        if result == "pass":
            return [Signal(
                type=DeterministicSignalType.DKIM,
                severity=Severity.INFO,
                score=0,
                detail="DKIM signature verified",
            )]
        return []


@register_rule
class DMARCRule(_AuthRule):
    """Detect DMARC policy failures."""

    rule_id = "AUTH-003"
    name = "DMARC Result"
    mechanism = "dmarc"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        result = self.get_result(email)
        if result == "fail":
            return [Signal(
                type=DeterministicSignalType.DMARC,
                severity=Severity.CRITICAL,
                score=30,
                detail="DMARC policy check failed - high likelihood of spoofing",
            )]
        if result == "pass":
            return [Signal(
                type=DeterministicSignalType.DMARC,
                severity=Severity.INFO,
                score=0,
                detail="DMARC policy check passed",
            )]
        return []
