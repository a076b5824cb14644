"""
MailShield Domain Age Analysis

Two views of domain age:

- ``analyze_domain_age`` scores a domain from WHOIS-style registration
  facts on its own (0-10).
- ``DomainAgeCorrelator`` amplifies signals that already point at
  BEC/impersonation/credential theft when the domain behind them is young
  or a lookalike. Age alone never creates risk here; an established
  domain gets no amplification.
"""

import logging
from datetime import datetime
from typing import List, Optional

from mailshield.config.scoring import DomainAgeConfig, get_scoring_config
from mailshield.models.signals import Severity, Signal, URLSignalType
from mailshield.models.url import (
    CompoundDomainRiskResult,
    DomainAgeInfo,
    DomainAgeResult,
    DomainAgeRisk,
    DomainCorrelationResult,
    RegistrationTimingResult,
    WhoisData,
)
from mailshield.utils.constants import REPUTABLE_REGISTRARS
from mailshield.utils.helpers import ensure_aware, utc_now

logger = logging.getLogger(__name__)


FINANCIAL_MARKERS = ("financial", "wire_transfer", "invoice", "payment")


# ============================================================================
# Standalone domain age scoring
# ============================================================================

def analyze_domain_age(
    domain: str,
    whois: Optional[WhoisData],
    now: Optional[datetime] = None,
) -> DomainAgeResult:
    """
    Score a domain from its registration facts.

    Args:
        domain: Registered domain
        whois: Facts from the WHOIS collaborator (None when unavailable)
        now: Reference time, defaults to the current UTC time

    Returns:
        DomainAgeResult with a 0-10 risk score
    """
    if whois is None or whois.created_date is None:
        return DomainAgeResult(
            domain=domain,
            age_days=-1,
            risk_score=3,
            signals=["unknown_whois_data"],
            registrar=whois.registrar if whois else None,
            privacy_protected=whois.privacy_protected if whois else False,
        )

    now = ensure_aware(now or utc_now())
    age_days = max(0, (now - ensure_aware(whois.created_date)).days)

    result = DomainAgeResult(
        domain=domain,
        age_days=age_days,
        registrar=whois.registrar,
        privacy_protected=whois.privacy_protected,
    )
    risk = 0

    if age_days < 30:
        result.is_new_domain = True
        result.signals.append("newly_registered_domain")
        risk += 7
    elif age_days < 90:
        result.is_new_domain = True
        result.signals.append("recently_registered_domain")
        risk += 4
    elif age_days < 180:
        result.signals.append("moderately_new_domain")
        risk += 2

    if whois.privacy_protected:
        result.signals.append("privacy_protected_whois")
        risk += 1

    registrar = (whois.registrar or "").lower()
    if registrar and any(name in registrar for name in REPUTABLE_REGISTRARS):
        result.signals.append("reputable_registrar")
        risk = max(0, risk - 2)

    result.risk_score = min(10, risk)
    return result


def get_domain_age_risk_level(
    age_days: Optional[int],
    config: Optional[DomainAgeConfig] = None,
) -> DomainAgeRisk:
    """Map an age in days to a risk band; unknown age is moderate."""
    config = config or get_scoring_config().domain_age
    if age_days is None or age_days < 0:
        return DomainAgeRisk.MODERATE
    if age_days <= config.critical_days:
        return DomainAgeRisk.CRITICAL
    if age_days <= config.high_days:
        return DomainAgeRisk.HIGH
    if age_days <= config.moderate_days:
        return DomainAgeRisk.MODERATE
    if age_days <= config.low_days:
        return DomainAgeRisk.LOW
    return DomainAgeRisk.SAFE


# ============================================================================
# Correlation with existing signals
# ============================================================================

class DomainAgeCorrelator:
    """Amplifies risk signals by the age of the domain behind them."""

    def __init__(self, config: Optional[DomainAgeConfig] = None):
        self.config = config or get_scoring_config().domain_age
        self.config.validate()

    def base_multiplier(self, risk_level: DomainAgeRisk) -> float:
        return {
            DomainAgeRisk.CRITICAL: self.config.critical_multiplier,
            DomainAgeRisk.HIGH: self.config.high_multiplier,
            DomainAgeRisk.MODERATE: self.config.moderate_multiplier,
            DomainAgeRisk.LOW: self.config.low_multiplier,
            DomainAgeRisk.SAFE: 1.0,
        }[risk_level]

    def effective_multiplier(self, domain: DomainAgeInfo, risk_level: DomainAgeRisk) -> float:
        """Band multiplier, floored for lookalikes and scaled by data reliability."""
        multiplier = self.base_multiplier(risk_level)
        if domain.lookalike_target:
            multiplier = max(multiplier, self.config.lookalike_min_multiplier)
        return round(1.0 + (multiplier - 1.0) * domain.reliability, 3)

    def is_amplifiable(self, signal: Signal) -> bool:
        return signal.type_name in self.config.amplifiable_types

    def correlate(self, signals: List[Signal], domain: DomainAgeInfo) -> DomainCorrelationResult:
        """
        Amplify amplifiable signals and add correlation signals.

        Returns every input signal (amplified ones replaced by new Signals
        carrying ``original_score``) followed by any correlation signals.
        """
        risk_level = get_domain_age_risk_level(domain.age_days, self.config)
        result = DomainCorrelationResult(
            risk_level=risk_level,
            correlated_signals=list(signals),
            original_signal_count=len(signals),
        )

        if risk_level == DomainAgeRisk.SAFE and not domain.lookalike_target:
            return result
        if not any(self.is_amplifiable(s) for s in signals):
            return result

        multiplier = self.effective_multiplier(domain, risk_level)
        if multiplier <= 1.0:
            return result

        correlated = [
            s.derive(
                score=round(s.score * multiplier),
                metadata={
                    **s.metadata,
                    "original_score": s.score,
                    "amplification_multiplier": multiplier,
                    "domain_age_days": domain.age_days,
                },
            ) if self.is_amplifiable(s) else s
            for s in signals
        ]
        correlated.extend(self._correlation_signals(signals, domain, multiplier))

        age_text = f"{domain.age_days} days" if domain.age_days is not None else "unknown age"
        logger.debug(f"Domain {domain.domain} ({age_text}) amplifies risk x{multiplier}")

        result.amplification_applied = True
        result.amplification_multiplier = multiplier
        result.correlated_signals = correlated
        result.reason = f"Domain age ({age_text}) amplifies risk signals"
        return result

    def _correlation_signals(
        self,
        signals: List[Signal],
        domain: DomainAgeInfo,
        multiplier: float,
    ) -> List[Signal]:
        extra: List[Signal] = []
        age = domain.age_days
        young = age is not None and 0 <= age <= self.config.high_days

        if young and any(s.type_name.startswith("bec_") for s in signals):
            extra.append(Signal(
                type=URLSignalType.DOMAIN_AGE_BEC_CORRELATION,
                severity=Severity.CRITICAL if age <= self.config.critical_days else Severity.WARNING,
                score=round(25 * multiplier),
                detail=f"BEC attack from domain registered {age} days ago",
                metadata={
                    "domain": domain.domain,
                    "domain_age_days": age,
                    "correlation_type": "bec_new_domain",
                },
            ))

        if domain.lookalike_target and any("credential" in s.type_name for s in signals):
            extra.append(Signal(
                type=URLSignalType.DOMAIN_AGE_LOOKALIKE_CORRELATION,
                severity=Severity.CRITICAL,
                score=35,
                detail=f"Credential phishing from lookalike domain mimicking {domain.lookalike_target}",
                metadata={
                    "domain": domain.domain,
                    "lookalike_target": domain.lookalike_target,
                    "domain_age_days": age,
                },
            ))

        if (
            young
            and domain.in_email_links
            and any(s.type_name == "free_email_provider" for s in signals)
        ):
            extra.append(Signal(
                type=URLSignalType.NEW_DOMAIN_IN_LINKS,
                severity=Severity.WARNING,
                score=20,
                detail=f"Email contains links to newly registered domain ({age} days old)",
                metadata={"domain": domain.domain, "domain_age_days": age, "sender_type": "free_email"},
            ))

        return extra


def correlate_domain_age(
    signals: List[Signal],
    domain: DomainAgeInfo,
    config: Optional[DomainAgeConfig] = None,
) -> DomainCorrelationResult:
    """Convenience wrapper around DomainAgeCorrelator."""
    return DomainAgeCorrelator(config).correlate(signals, domain)


# ============================================================================
# Compound patterns
# ============================================================================

def calculate_compound_domain_risk(
    signals: List[Signal],
    domain_age_days: Optional[int],
    first_contact: bool,
    config: Optional[DomainAgeConfig] = None,
) -> CompoundDomainRiskResult:
    """
    New-vendor fraud: first contact from a young domain, worst with a
    financial request attached.
    """
    config = config or get_scoring_config().domain_age
    young = domain_age_days is not None and 0 <= domain_age_days <= config.high_days
    if not (first_contact and young):
        return CompoundDomainRiskResult()

    has_financial = any(
        marker in s.type_name for s in signals for marker in FINANCIAL_MARKERS
    )

    if has_financial:
        multiplier = 2.5 if domain_age_days <= config.critical_days else 2.0
        pattern = "new_vendor_fraud"
        signal = Signal(
            type=URLSignalType.COMPOUND_DOMAIN_RISK,
            severity=Severity.CRITICAL,
            score=40,
            detail=(
                f"New vendor fraud pattern: first contact from {domain_age_days}-day-old "
                f"domain with financial request"
            ),
            metadata={"pattern": pattern, "domain_age_days": domain_age_days, "risk_multiplier": multiplier},
        )
    else:
        multiplier = 1.5
        pattern = "first_contact_new_domain"
        signal = Signal(
            type=URLSignalType.COMPOUND_DOMAIN_RISK,
            severity=Severity.WARNING,
            score=20,
            detail=f"First contact from recently registered domain ({domain_age_days} days)",
            metadata={"pattern": pattern, "domain_age_days": domain_age_days, "risk_multiplier": multiplier},
        )

    return CompoundDomainRiskResult(
        is_compound_threat=True,
        risk_multiplier=multiplier,
        threat_pattern=pattern,
        signals=[signal],
    )


def analyze_registration_timing(
    domain: str,
    registration_date: datetime,
    target_organization: Optional[str] = None,
    now: Optional[datetime] = None,
    config: Optional[DomainAgeConfig] = None,
) -> RegistrationTimingResult:
    """
    Was the domain registered just before it was used?

    A domain that also embeds the name of the targeted organization
    (``acme-payments.com`` aimed at ``acme.com``) is suspicious at any age.
    """
    config = config or get_scoring_config().domain_age
    now = ensure_aware(now or utc_now())
    days = (now - ensure_aware(registration_date)).days

    result = RegistrationTimingResult()
    if days < config.critical_days:
        result.is_suspicious = True
        result.risk_score = 9
        result.suspicion_reason = (
            "recent_registration_targeting" if target_organization else "very_recent_registration"
        )
    elif days < config.high_days:
        result.is_suspicious = True
        result.risk_score = 7
        result.suspicion_reason = "recent_registration"
    elif days < config.moderate_days:
        result.risk_score = 4

    if target_organization:
        target = target_organization.lower().rsplit(".", 1)[0]
        normalized = domain.lower()
        if target and (target in normalized or target.replace(".", "-") in normalized):
            result.is_suspicious = True
            result.risk_score = max(result.risk_score, 8)
            result.suspicion_reason = (
                f"{result.suspicion_reason},targeted_domain_name"
                if result.suspicion_reason else "targeted_domain_name"
            )

    return result


def registration_timing_signal(domain: str, timing: RegistrationTimingResult) -> Optional[Signal]:
    """Signal for a suspicious registration timing result, None otherwise."""
    if not timing.is_suspicious:
        return None
    return Signal(
        type=URLSignalType.SUSPICIOUS_REGISTRATION,
        severity=Severity.CRITICAL if timing.risk_score >= 8 else Severity.WARNING,
        score=timing.risk_score * 3,
        detail=f"Domain {domain} registered just before use ({timing.suspicion_reason})",
        metadata={"domain": domain, "reason": timing.suspicion_reason, "risk_score": timing.risk_score},
    )
