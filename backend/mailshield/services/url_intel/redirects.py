"""
MailShield Redirect Chain Analysis

Scores an already-resolved redirect chain (the hops are supplied by the
caller; nothing here follows links):

- excessive hop count and multiple shortener hops
- rapid domain hopping
- HTTPS -> HTTP downgrade (never the reverse)
- transitions to high-risk TLDs, especially away from a trusted brand
- chains ending at a raw IP address
- reputation decline relative to the first hop
- user-agent based cloaking
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from mailshield.models.signals import Severity, Signal, URLSignalType
from mailshield.models.url import CloakingResult, RedirectAnalysis, RedirectHop
from mailshield.utils.constants import HIGH_RISK_TLDS, SHORTENER_DOMAINS, TRUSTED_BRANDS
from mailshield.utils.helpers import domain_matches, extract_hostname, is_ip_address

logger = logging.getLogger(__name__)


EXCESSIVE_HOPS = 4
MIN_HOPPING_DOMAINS = 4
REPUTATION_DROP_THRESHOLD = 30.0
SECOND_LEVEL_LABELS = {"co", "com", "org", "gov"}
BOT_MARKERS = ("bot", "crawler")


def _tld(hostname: str) -> Optional[str]:
    parts = hostname.split(".")
    if len(parts) < 2:
        return None
    if len(parts) >= 3 and parts[-2] in SECOND_LEVEL_LABELS:
        return "." + ".".join(parts[-2:])
    return f".{parts[-1]}"


def _is_shortener(hostname: str) -> bool:
    return hostname in SHORTENER_DOMAINS


def _is_trusted_brand(hostname: str) -> bool:
    return any(domain_matches(hostname, brand) for brand in TRUSTED_BRANDS)


def _is_high_risk_tld(tld: Optional[str]) -> bool:
    return bool(tld) and tld in HIGH_RISK_TLDS


def analyze_redirect_chain(hops: List[RedirectHop]) -> RedirectAnalysis:
    """
    Analyze an ordered redirect chain.

    Args:
        hops: Hops from the URL in the email to the final destination

    Returns:
        RedirectAnalysis with a 0-10 risk score and pattern names
    """
    if not hops:
        return RedirectAnalysis()

    hostnames = [extract_hostname(hop.url) for hop in hops]
    known_hosts = [h for h in hostnames if h]
    unique_domains = len(set(known_hosts))
    shortener_count = sum(1 for h in known_hosts if _is_shortener(h))

    # Distinct TLDs in order of first appearance
    tlds = list(OrderedDict.fromkeys(
        t for t in (_tld(h) for h in known_hosts if not is_ip_address(h)) if t
    ))

    analysis = RedirectAnalysis(
        hop_count=len(hops),
        shortener_count=shortener_count,
        unique_domains=unique_domains,
        tld_changes=tlds,
        final_destination=hops[-1].url,
    )
    risk = 0

    if len(hops) >= EXCESSIVE_HOPS:
        analysis.signals.append("excessive_redirects")
        risk += 5 + min(5, len(hops) - EXCESSIVE_HOPS)

    if shortener_count >= 2:
        analysis.signals.append("multiple_shorteners")
        risk += 4

    if unique_domains >= MIN_HOPPING_DOMAINS:
        analysis.signals.append("rapid_domain_hopping")
        risk += 4

    for previous, current in zip(hops, hops[1:]):
        if previous.url.lower().startswith("https://") and current.url.lower().startswith("http://"):
            analysis.has_protocol_downgrade = True
            analysis.signals.append("https_to_http_downgrade")
            risk += 8
            break

    if len(tlds) > 1 and _is_high_risk_tld(tlds[-1]):
        analysis.has_suspicious_tld_change = True
        analysis.signals.extend(["suspicious_tld_change", "high_risk_tld_destination"])
        risk += 5

    first_host, last_host = hostnames[0], hostnames[-1]
    if len(hops) >= 2 and first_host and last_host:
        if _is_trusted_brand(first_host) and _is_high_risk_tld(_tld(last_host)):
            analysis.signals.append("brand_to_suspicious_tld")
            risk += 6

    if last_host and is_ip_address(last_host):
        analysis.ends_at_ip_address = True
        analysis.signals.append("redirect_to_ip")
        risk += 5

    reputations = [hop.reputation for hop in hops if hop.reputation is not None]
    if len(reputations) >= 2:
        first = reputations[0]
        lowest = min(reputations)
        analysis.min_reputation = lowest
        if first > 0 and lowest < first:
            drop = (first - lowest) / first * 100
            analysis.reputation_drop_percent = round(drop)
            if drop > REPUTATION_DROP_THRESHOLD:
                analysis.reputation_decline = True
                analysis.signals.append("reputation_decline_in_chain")
                risk += 3

    analysis.risk_score = min(10, risk)
    analysis.is_suspicious = bool(analysis.signals)

    if analysis.is_suspicious:
        logger.debug(
            f"Suspicious redirect chain ({len(hops)} hops): {', '.join(analysis.signals)}"
        )
    return analysis


def detect_cloaking(hops: List[RedirectHop]) -> CloakingResult:
    """
    Detect cloaking: the same link resolving to different destinations
    depending on the client that followed it.

    Hops resolved by different user agents are grouped; more than one
    distinct final URL across the groups is cloaking.
    """
    by_agent: Dict[str, List[RedirectHop]] = OrderedDict()
    for hop in hops:
        by_agent.setdefault(hop.user_agent or "default", []).append(hop)

    if len(by_agent) < 2:
        return CloakingResult()

    final_urls = list(OrderedDict.fromkeys(group[-1].url for group in by_agent.values()))
    if len(final_urls) < 2:
        return CloakingResult()

    has_bot = any(
        marker in agent.lower() for agent in by_agent for marker in BOT_MARKERS
    )
    return CloakingResult(
        is_cloaking=True,
        technique="user_agent_based" if has_bot else "selective_redirect",
        evidence=f"Different destinations: {' vs '.join(final_urls)}",
    )


def redirect_signals(
    analysis: RedirectAnalysis,
    cloaking: Optional[CloakingResult] = None,
) -> List[Signal]:
    """Convert redirect-chain findings into scored signals."""
    signals: List[Signal] = []

    if analysis.risk_score > 0:
        if analysis.risk_score >= 8:
            severity = Severity.CRITICAL
        elif analysis.risk_score >= 5:
            severity = Severity.WARNING
        else:
            severity = Severity.INFO
        signals.append(Signal(
            type=URLSignalType.REDIRECT_CHAIN_RISK,
            severity=severity,
            score=analysis.risk_score * 4,
            detail=(
                f"Redirect chain risk: {analysis.hop_count} hops, "
                f"{analysis.unique_domains} domains"
            ),
            metadata={
                "hop_count": analysis.hop_count,
                "shortener_count": analysis.shortener_count,
                "unique_domains": analysis.unique_domains,
                "patterns": list(analysis.signals),
                "final_destination": analysis.final_destination,
            },
        ))

    if analysis.has_protocol_downgrade:
        signals.append(Signal(
            type=URLSignalType.PROTOCOL_DOWNGRADE,
            severity=Severity.WARNING,
            score=25,
            detail="HTTPS to HTTP downgrade detected in redirect chain",
            metadata={"pattern": "https_to_http"},
        ))

    if analysis.has_suspicious_tld_change and analysis.tld_changes:
        signals.append(Signal(
            type=URLSignalType.SUSPICIOUS_TLD_REDIRECT,
            severity=Severity.WARNING,
            score=20,
            detail=f"Redirect chain ends at suspicious TLD: {analysis.tld_changes[-1]}",
            metadata={"tld_changes": list(analysis.tld_changes)},
        ))

    if analysis.ends_at_ip_address:
        signals.append(Signal(
            type=URLSignalType.REDIRECT_TO_IP,
            severity=Severity.WARNING,
            score=20,
            detail="Redirect chain ends at raw IP address",
            metadata={"final_destination": analysis.final_destination},
        ))

    if analysis.reputation_decline:
        signals.append(Signal(
            type=URLSignalType.REPUTATION_DECLINE,
            severity=Severity.WARNING,
            score=15,
            detail=(
                f"Reputation drops {analysis.reputation_drop_percent}% "
                f"across the redirect chain"
            ),
            metadata={
                "min_reputation": analysis.min_reputation,
                "drop_percent": analysis.reputation_drop_percent,
            },
        ))

    if cloaking is not None and cloaking.is_cloaking:
        signals.append(Signal(
            type=URLSignalType.CLOAKING_REDIRECT,
            severity=Severity.CRITICAL,
            score=30,
            detail=f"Cloaking redirect ({cloaking.technique})",
            metadata={"technique": cloaking.technique, "evidence": cloaking.evidence},
        ))

    return signals
