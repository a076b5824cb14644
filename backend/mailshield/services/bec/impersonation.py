"""
MailShield Executive Impersonation Detection

Checks run against one sender:

1. VIP display name with an address that is not the VIP's  (critical)
2. Executive title in the display name                      (high)
3. Free-mail sender using a VIP name or an executive title  (critical)
4. Reply-To on a different domain                           (medium, high for free mail)
5. Cousin domain of the tenant's own organization domain    (high)
6. Non-ASCII in the sender domain, or Cyrillic/Greek letters
   standing in for Latin ones in the display name            (critical)

A failing VIP directory degrades to a ``vip_lookup_failed`` indicator;
the remaining checks still run.
"""

import re
import time
import logging
import unicodedata
from typing import List, Optional, Tuple

from mailshield.models.impersonation import (
    VIP,
    ImpersonationIndicator,
    ImpersonationResult,
    RiskLevel,
)
from mailshield.models.signals import ImpersonationSignalType, LayerName, LayerResult
from mailshield.utils.constants import (
    COUSIN_SUBSTITUTIONS,
    EXECUTIVE_TITLE_PATTERNS,
    FREE_EMAIL_PROVIDERS,
    UNICODE_HOMOGLYPHS,
)
from mailshield.utils.helpers import domain_base, extract_domain_from_email, levenshtein_distance

from .vip import VIPDirectory

logger = logging.getLogger(__name__)


TITLE_PATTERNS = [re.compile(p, re.IGNORECASE) for p in EXECUTIVE_TITLE_PATTERNS]
FREE_EMAIL_DOMAINS = set(FREE_EMAIL_PROVIDERS)

# Confusable letter -> Latin letter it mimics
HOMOGLYPH_TO_LATIN = {
    glyph: latin for latin, glyphs in UNICODE_HOMOGLYPHS.items() for glyph in glyphs
}
SPOOF_SCRIPTS = ("CYRILLIC", "GREEK")

RISK_WEIGHTS = {
    RiskLevel.CRITICAL: 1.0,
    RiskLevel.HIGH: 0.7,
    RiskLevel.MEDIUM: 0.4,
    RiskLevel.LOW: 0.2,
}

IMPERSONATION_CONFIDENCE_THRESHOLD = 0.5


# =============================================================================
# INDIVIDUAL CHECKS
# =============================================================================

def find_executive_title(display_name: str) -> Optional[str]:
    for pattern in TITLE_PATTERNS:
        match = pattern.search(display_name or "")
        if match:
            return match.group(0)
    return None


def check_cousin_domain(sender_domain: str, org_domain: str) -> Tuple[bool, float, str]:
    """Compare a sender domain against the tenant's own domain."""
    sender_domain = sender_domain.lower()
    org_domain = org_domain.lower()
    if not sender_domain or not org_domain or sender_domain == org_domain:
        return False, 0.0, ""
    if sender_domain.endswith(f".{org_domain}"):
        return False, 0.0, ""

    sender_base = domain_base(sender_domain)
    org_base = domain_base(org_domain)

    if sender_base == org_base:
        return True, 0.85, f'"{sender_domain}" mimics "{org_domain}" with a different TLD'

    distance = levenshtein_distance(sender_base, org_base)
    if 0 < distance <= 2 and len(sender_base) >= 4:
        return (
            True,
            0.9 if distance == 1 else 0.7,
            f'"{sender_domain}" is {distance} character(s) away from "{org_domain}"',
        )

    for original, replacement in COUSIN_SUBSTITUTIONS:
        if original in org_base and sender_base == org_base.replace(original, replacement):
            return (
                True,
                0.85,
                f'"{sender_domain}" substitutes "{replacement}" for "{original}" in "{org_domain}"',
            )

    return False, 0.0, ""


def find_script_spoof(display_name: str) -> Optional[Tuple[str, str]]:
    """First Cyrillic/Greek character that imitates a Latin letter."""
    for char in display_name or "":
        if ord(char) < 128:
            continue
        latin = HOMOGLYPH_TO_LATIN.get(char.lower())
        if latin and unicodedata.name(char, "").startswith(SPOOF_SCRIPTS):
            return char, latin
    return None


def has_non_ascii(value: str) -> bool:
    return any(ord(c) > 127 for c in value or "")


# =============================================================================
# RISK
# =============================================================================

def calculate_impersonation_risk(indicators: List[ImpersonationIndicator]) -> Tuple[float, RiskLevel]:
    """
    Score = min(sum of level weights / 2, 1). Any critical indicator makes
    the level critical; otherwise >= 0.8 critical, >= 0.5 high, >= 0.3 medium.
    """
    if not indicators:
        return 0.0, RiskLevel.LOW

    score = min(sum(RISK_WEIGHTS[i.level] for i in indicators) / 2, 1.0)

    if score >= 0.8 or any(i.level == RiskLevel.CRITICAL for i in indicators):
        level = RiskLevel.CRITICAL
    elif score >= 0.5:
        level = RiskLevel.HIGH
    elif score >= 0.3:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return round(score, 3), level


# =============================================================================
# DETECTOR
# =============================================================================

class ImpersonationDetector:
    """Executive / VIP impersonation checks for a single sender."""

    def __init__(self, directory: Optional[VIPDirectory] = None):
        self.directory = directory

    async def _vip_checks(
        self,
        tenant_id: str,
        sender_email: str,
        display_name: str,
        sender_domain: str,
        title: Optional[str],
        indicators: List[ImpersonationIndicator],
    ) -> Tuple[Optional[VIP], float]:
        confidence = 0.0
        matched: Optional[VIP] = None

        check = await self.directory.check_impersonation(tenant_id, sender_email, display_name)
        if check.is_impersonation and check.matched_vip:
            matched = check.matched_vip
            confidence = check.confidence
            indicators.append(ImpersonationIndicator(
                type=ImpersonationSignalType.VIP_DISPLAY_NAME_SPOOF,
                level=RiskLevel.CRITICAL,
                detail=check.reason or f"Display name matches VIP {matched.display_name}",
                confidence=check.confidence,
            ))

        if sender_domain in FREE_EMAIL_DOMAINS:
            candidates = await self.directory.find_by_display_name(tenant_id, display_name)
            if candidates:
                confidence = max(confidence, 0.75 if title else 0.7)
                indicators.append(ImpersonationIndicator(
                    type=ImpersonationSignalType.FREE_EMAIL_EXECUTIVE,
                    level=RiskLevel.CRITICAL,
                    detail=f'VIP name "{display_name}" used from free email domain {sender_domain}',
                    confidence=confidence,
                ))
                matched = matched or candidates[0]

        return matched, confidence

    async def detect(
        self,
        tenant_id: str,
        sender_email: str,
        display_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        organization_domain: Optional[str] = None,
    ) -> ImpersonationResult:
        indicators: List[ImpersonationIndicator] = []
        display_name = display_name or ""
        sender_domain = extract_domain_from_email(sender_email) or ""
        confidence = 0.0
        matched: Optional[VIP] = None

        title = find_executive_title(display_name)

        # 1, 3: directory-backed checks
        if self.directory is not None and display_name:
            try:
                matched, confidence = await self._vip_checks(
                    tenant_id, sender_email, display_name, sender_domain, title, indicators,
                )
            except Exception as e:
                logger.warning(f"VIP lookup failed for tenant {tenant_id}: {e}")
                indicators.append(ImpersonationIndicator(
                    type=ImpersonationSignalType.VIP_LOOKUP_FAILED,
                    level=RiskLevel.LOW,
                    detail="VIP directory lookup failed; VIP checks skipped",
                ))

        # 2: title in display name
        if title:
            confidence = max(confidence, 0.6)
            indicators.append(ImpersonationIndicator(
                type=ImpersonationSignalType.TITLE_SPOOF,
                level=RiskLevel.HIGH,
                detail=f'Executive title in display name: "{title}"',
                confidence=0.6,
            ))
            # 3: title from free mail, whether or not a VIP matched
            if sender_domain in FREE_EMAIL_DOMAINS and not any(
                i.type == ImpersonationSignalType.FREE_EMAIL_EXECUTIVE for i in indicators
            ):
                confidence = max(confidence, 0.75)
                indicators.append(ImpersonationIndicator(
                    type=ImpersonationSignalType.FREE_EMAIL_EXECUTIVE,
                    level=RiskLevel.CRITICAL,
                    detail=f'Executive title "{title}" sent from free email domain {sender_domain}',
                    confidence=0.75,
                ))

        # 4: reply-to on another domain
        if reply_to and reply_to.lower() != sender_email.lower():
            reply_domain = extract_domain_from_email(reply_to)
            if reply_domain and reply_domain != sender_domain:
                confidence = max(confidence, 0.5)
                free = reply_domain in FREE_EMAIL_DOMAINS
                indicators.append(ImpersonationIndicator(
                    type=ImpersonationSignalType.REPLY_TO_MISMATCH,
                    level=RiskLevel.HIGH if free else RiskLevel.MEDIUM,
                    detail=f'Reply-To "{reply_to}" differs from sender "{sender_email}"',
                    confidence=0.5,
                ))

        # 5: cousin of the tenant's own domain
        if organization_domain:
            is_cousin, cousin_confidence, explanation = check_cousin_domain(sender_domain, organization_domain)
            if is_cousin:
                confidence = max(confidence, cousin_confidence)
                indicators.append(ImpersonationIndicator(
                    type=ImpersonationSignalType.COUSIN_DOMAIN,
                    level=RiskLevel.HIGH,
                    detail=f"Lookalike domain: {explanation}",
                    confidence=cousin_confidence,
                ))

        # 6: unicode spoofing
        spoof_detail = None
        if has_non_ascii(sender_domain):
            spoof_detail = f"Non-ASCII characters in sender domain {sender_domain}"
        else:
            spoof = find_script_spoof(display_name)
            if spoof:
                spoof_detail = f'Display name uses "{spoof[0]}" in place of "{spoof[1]}"'
        if spoof_detail:
            confidence = max(confidence, 0.9)
            indicators.append(ImpersonationIndicator(
                type=ImpersonationSignalType.UNICODE_SPOOF,
                level=RiskLevel.CRITICAL,
                detail=spoof_detail,
                confidence=0.9,
            ))

        findings = [i for i in indicators if i.type != ImpersonationSignalType.VIP_LOOKUP_FAILED]
        risk_score, risk_level = calculate_impersonation_risk(findings)

        if not findings:
            explanation = "No impersonation indicators detected"
        elif len(findings) == 1:
            explanation = findings[0].detail
        else:
            explanation = "Multiple impersonation indicators: " + ", ".join(i.type.value for i in findings)

        result = ImpersonationResult(
            is_impersonation=confidence > IMPERSONATION_CONFIDENCE_THRESHOLD,
            confidence=round(confidence, 3),
            impersonation_type=findings[0].type if findings else None,
            indicators=indicators,
            explanation=explanation,
            matched_vip=matched,
            risk_level=risk_level,
            risk_score=risk_score,
        )
        if result.is_impersonation:
            logger.info(
                f"Impersonation suspected for {sender_email} ({risk_level.value}): {explanation}"
            )
        return result

    async def analyze(
        self,
        tenant_id: str,
        sender_email: str,
        display_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        organization_domain: Optional[str] = None,
    ) -> LayerResult:
        """Run detection and wrap it as the impersonation LayerResult."""
        start = time.time()
        result = await self.detect(tenant_id, sender_email, display_name, reply_to, organization_domain)
        return LayerResult(
            layer=LayerName.IMPERSONATION,
            score=int(round(result.risk_score * 100)),
            confidence=result.confidence,
            signals=result.signals,
            processing_time_ms=(time.time() - start) * 1000,
            metadata={
                "is_impersonation": result.is_impersonation,
                "risk_level": result.risk_level.value,
                "matched_vip": result.matched_vip.email if result.matched_vip else None,
            },
        )
