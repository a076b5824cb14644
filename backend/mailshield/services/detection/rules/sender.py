"""
MailShield Sender Detection Rules

Free/disposable providers, homoglyph and cousin brand domains and
display-name spoofing.
"""

from typing import List, Optional

from mailshield.models.email import ParsedEmail
from mailshield.models.signals import DeterministicSignalType, Severity, Signal
from mailshield.utils.constants import (
    AUTHORITY_TERMS,
    BRAND_DOMAINS,
    DISPOSABLE_DOMAINS,
    FREE_EMAIL_PROVIDERS,
    SENDER_HOMOGLYPHS,
)
from mailshield.utils.helpers import domain_base, domain_matches

from .base import DetectionRule, RuleContext, register_rule


MAX_HOMOGLYPH_SUBSTITUTIONS = 2


def is_homoglyph_of(candidate: str, target: str) -> bool:
    """
    True when candidate spells target with 1-2 homoglyph substitutions
    and no other differences.
    """
    if len(candidate) != len(target) or candidate == target:
        return False
    substitutions = 0
    for test_char, target_char in zip(candidate, target):
        if test_char == target_char:
            continue
        if test_char not in SENDER_HOMOGLYPHS.get(target_char, []):
            return False
        substitutions += 1
    return substitutions <= MAX_HOMOGLYPH_SUBSTITUTIONS


def detect_homoglyph_brand(domain: str) -> Optional[str]:
    """Brand domain impersonated via homoglyphs, e.g. paypa1.com -> paypal.com."""
    base = domain_base(domain)
    for brand in BRAND_DOMAINS:
        if is_homoglyph_of(base, domain_base(brand)):
            return brand
    return None


def detect_cousin_brand(domain: str) -> Optional[str]:
    """Brand whose name appears inside an unrelated domain (paypal-secure.com)."""
    domain = domain.lower()
    for brand in BRAND_DOMAINS:
        if domain_base(brand) in domain and not domain_matches(domain, brand):
            return brand
    return None


def detect_display_name_spoof(display_name: str, domain: str) -> Optional[str]:
    """Brand or authority figure the display name claims, if the domain disagrees."""
    name = display_name.lower()
    for brand in BRAND_DOMAINS:
        brand_base = domain_base(brand)
        if brand_base in name and brand_base not in domain:
            return brand_base

    if domain in FREE_EMAIL_PROVIDERS and any(term in name for term in AUTHORITY_TERMS):
        return "authority figure"
    return None


@register_rule
class FreeEmailProviderRule(DetectionRule):
    """Sender uses a consumer mailbox provider."""

    rule_id = "SENDER-001"
    name = "Free Email Provider"
    category = "sender"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        domain = self.get_sender_domain(email)
        if domain and domain in FREE_EMAIL_PROVIDERS:
            return [Signal(
                type=DeterministicSignalType.FREE_EMAIL_PROVIDER,
                severity=Severity.INFO,
                score=5,
                detail=f"Sender using free email provider: {domain}",
            )]
        return []


@register_rule
class DisposableEmailRule(DetectionRule):
    """Sender uses a throwaway mailbox service."""

    rule_id = "SENDER-002"
    name = "Disposable Email"
    category = "sender"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        domain = self.get_sender_domain(email)
        if domain and domain in DISPOSABLE_DOMAINS:
            return [Signal(
                type=DeterministicSignalType.DISPOSABLE_EMAIL,
                severity=Severity.WARNING,
                score=25,
                detail=f"Sender using disposable email service: {domain}",
            )]
        return []


@register_rule
class BrandLookalikeSenderRule(DetectionRule):
    """
    Sender domain imitates a brand.

    A homoglyph match suppresses the weaker cousin-domain signal for the
    same domain.
    """

    rule_id = "SENDER-003"
    name = "Brand Lookalike Sender"
    category = "sender"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        domain = self.get_sender_domain(email)
        if not domain:
            return []

        homoglyph_brand = detect_homoglyph_brand(domain)
        if homoglyph_brand:
            return [Signal(
                type=DeterministicSignalType.HOMOGLYPH,
                severity=Severity.CRITICAL,
                score=40,
                detail=f'Domain "{domain}" appears to impersonate "{homoglyph_brand}"',
                metadata={"impersonated_domain": homoglyph_brand},
            )]

        cousin_brand = detect_cousin_brand(domain)
        if cousin_brand:
            return [Signal(
                type=DeterministicSignalType.COUSIN_DOMAIN,
                severity=Severity.WARNING,
                score=20,
                detail=f'Domain "{domain}" similar to brand "{cousin_brand}"',
                metadata={"similar_brand": cousin_brand},
            )]
        return []


@register_rule
class DisplayNameSpoofRule(DetectionRule):
    """Display name claims a brand or authority the sending domain does not back."""

    rule_id = "SENDER-004"
    name = "Display Name Spoof"
    category = "sender"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        domain = self.get_sender_domain(email)
        display_name = email.sender.display_name
        if not domain or not display_name:
            return []

        impersonated = detect_display_name_spoof(display_name, domain)
        if not impersonated:
            return []
        return [Signal(
            type=DeterministicSignalType.DISPLAY_NAME_SPOOF,
            severity=Severity.WARNING,
            score=25,
            detail=f'Display name "{display_name}" may impersonate "{impersonated}" but sent from {domain}',
            metadata={"impersonated_brand": impersonated},
        )]
