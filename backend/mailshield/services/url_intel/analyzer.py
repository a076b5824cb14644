"""
MailShield URL Intelligence

Combines domain age, lookalike, obfuscation and redirect-chain analysis
into one 0-10 risk score per URL, and turns the findings for all URLs of
an email into the URL intelligence LayerResult.

Scoring weights:
    domain age      0.4
    lookalike       0.7
    obfuscation     0.6 (1.0 when a brand is used as a credential prefix)
    redirect chain  0.3

Verdict: malicious >= 7, suspicious >= 3, otherwise safe.
"""

import time
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlparse

from mailshield.models.signals import LayerName, LayerResult, Severity, Signal, URLSignalType
from mailshield.models.url import RedirectHop, URLIntelligenceResult, URLVerdict, WhoisData
from mailshield.services.detection.deduplicator import deduplicate_signals
from mailshield.services.detection.scoring import score_signals
from mailshield.utils.helpers import registrable_domain, unique

from .domain_age import analyze_domain_age
from .lookalike import detect_lookalike_domain
from .obfuscation import detect_url_obfuscation
from .redirects import analyze_redirect_chain, detect_cloaking, redirect_signals

logger = logging.getLogger(__name__)


DOMAIN_AGE_WEIGHT = 0.4
LOOKALIKE_WEIGHT = 0.7
OBFUSCATION_WEIGHT = 0.6
BRAND_CREDENTIAL_WEIGHT = 1.0
REDIRECT_WEIGHT = 0.3

MALICIOUS_THRESHOLD = 7.0
SUSPICIOUS_THRESHOLD = 3.0
PARSE_ERROR_SCORE = 5.0

URL_INTELLIGENCE_CONFIDENCE = 0.75


def _verdict(score: float) -> URLVerdict:
    if score >= MALICIOUS_THRESHOLD:
        return URLVerdict.MALICIOUS
    if score >= SUSPICIOUS_THRESHOLD:
        return URLVerdict.SUSPICIOUS
    return URLVerdict.SAFE


def _hostname(url: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not hostname:
        return None
    return hostname.lower()


def get_url_intelligence(
    url: str,
    whois: Optional[WhoisData] = None,
    redirect_chain: Optional[List[RedirectHop]] = None,
    check_lookalike: bool = True,
    check_obfuscation: bool = True,
    now: Optional[datetime] = None,
) -> URLIntelligenceResult:
    """
    Analyze a single URL.

    Domain age is only scored when WHOIS facts are supplied and the redirect
    chain only when hops are supplied; lookalike and obfuscation checks run
    by default. A URL that cannot be parsed is returned as suspicious with
    ``parse_error`` set rather than raising.
    """
    hostname = _hostname(url)
    if hostname is None:
        logger.debug(f"Could not parse URL for intelligence: {url[:120]}")
        return URLIntelligenceResult(
            url=url,
            overall_risk_score=PARSE_ERROR_SCORE,
            verdict=URLVerdict.SUSPICIOUS,
            signals=["invalid_url"],
            parse_error=True,
        )

    result = URLIntelligenceResult(url=url)
    findings: List[str] = []
    score = 0.0

    if whois is not None:
        result.domain_age = analyze_domain_age(registrable_domain(hostname), whois, now=now)
        result.breakdown["domain_age"] = result.domain_age.risk_score
        score += result.domain_age.risk_score * DOMAIN_AGE_WEIGHT
        findings.extend(result.domain_age.signals)

    if check_lookalike:
        result.lookalike = detect_lookalike_domain(hostname)
        result.breakdown["lookalike"] = result.lookalike.risk_score
        score += result.lookalike.risk_score * LOOKALIKE_WEIGHT
        findings.extend(result.lookalike.signals)

    if check_obfuscation:
        result.obfuscation = detect_url_obfuscation(url)
        result.breakdown["obfuscation"] = result.obfuscation.risk_score
        weight = (
            BRAND_CREDENTIAL_WEIGHT
            if "brand_in_credential_prefix" in result.obfuscation.signals
            else OBFUSCATION_WEIGHT
        )
        score += result.obfuscation.risk_score * weight
        findings.extend(result.obfuscation.signals)

    if redirect_chain:
        result.redirect_chain = analyze_redirect_chain(redirect_chain)
        result.breakdown["redirect_chain"] = result.redirect_chain.risk_score
        score += result.redirect_chain.risk_score * REDIRECT_WEIGHT
        findings.extend(result.redirect_chain.signals)

    result.overall_risk_score = round(min(10.0, score), 2)
    result.verdict = _verdict(result.overall_risk_score)
    result.signals = unique(findings)
    return result


def intelligence_to_signals(
    result: URLIntelligenceResult,
    redirect_chain: Optional[List[RedirectHop]] = None,
) -> List[Signal]:
    """Convert one URL's intelligence into scored signals."""
    if result.parse_error:
        return [Signal(
            type=URLSignalType.URL_PARSE_ERROR,
            severity=Severity.WARNING,
            score=10,
            detail=f"URL could not be parsed: {result.url[:100]}",
            metadata={"url": result.url, "parse_error": True},
        )]

    signals: List[Signal] = []

    lookalike = result.lookalike
    if lookalike is not None and lookalike.is_lookalike:
        signals.append(Signal(
            type=URLSignalType.LOOKALIKE_DOMAIN,
            severity=Severity.CRITICAL if lookalike.risk_score >= 8 else Severity.WARNING,
            score=lookalike.risk_score * 4,
            detail=f"Domain {lookalike.domain} imitates {lookalike.target_domain} ({lookalike.technique})",
            metadata={
                "url": result.url,
                "target_domain": lookalike.target_domain,
                "technique": lookalike.technique,
                "patterns": list(lookalike.signals),
            },
        ))

    obfuscation = result.obfuscation
    if obfuscation is not None and obfuscation.is_obfuscated:
        signals.append(Signal(
            type=URLSignalType.URL_OBFUSCATION,
            severity=Severity.CRITICAL if obfuscation.risk_score >= 8 else Severity.WARNING,
            score=obfuscation.risk_score * 4,
            detail=f"Obfuscated URL ({obfuscation.technique})",
            metadata={
                "url": result.url,
                "technique": obfuscation.technique,
                "decoded_url": obfuscation.decoded_url,
                "patterns": list(obfuscation.signals),
            },
        ))

    age = result.domain_age
    if age is not None and age.is_new_domain:
        signals.append(Signal(
            type=URLSignalType.NEW_DOMAIN,
            severity=Severity.WARNING,
            score=age.risk_score * 3,
            detail=f"Link to domain registered {age.age_days} days ago",
            metadata={
                "url": result.url,
                "domain": age.domain,
                "age_days": age.age_days,
                "registrar": age.registrar,
            },
        ))

    if result.redirect_chain is not None:
        cloaking = detect_cloaking(redirect_chain) if redirect_chain else None
        signals.extend(
            s.derive(metadata={**s.metadata, "url": result.url})
            for s in redirect_signals(result.redirect_chain, cloaking)
        )

    return signals


class URLIntelligenceAnalyzer:
    """Produces the URL intelligence layer for the URLs of one email."""

    def analyze(
        self,
        urls: Iterable[str],
        whois: Optional[Mapping[str, WhoisData]] = None,
        redirect_chains: Optional[Mapping[str, List[RedirectHop]]] = None,
        now: Optional[datetime] = None,
    ) -> LayerResult:
        """
        Args:
            urls: URLs found in the email
            whois: Registration facts keyed by registrable domain
            redirect_chains: Resolved hops keyed by the URL they start from

        Returns:
            LayerResult with layer=url_intelligence
        """
        start = time.perf_counter()
        whois = whois or {}
        redirect_chains = redirect_chains or {}

        raw_signals: List[Signal] = []
        verdicts: Dict[str, str] = {}
        for url in unique(urls):
            hostname = _hostname(url)
            domain = registrable_domain(hostname) if hostname else None
            chain = redirect_chains.get(url)
            intel = get_url_intelligence(
                url,
                whois=whois.get(domain) if domain else None,
                redirect_chain=chain,
                now=now,
            )
            verdicts[url] = intel.verdict.value
            raw_signals.extend(intelligence_to_signals(intel, chain))

        signals = deduplicate_signals(raw_signals)
        score = score_signals(signals)
        elapsed_ms = (time.perf_counter() - start) * 1000

        logger.debug(f"URL intelligence: {len(verdicts)} URLs, score={score}")
        return LayerResult(
            layer=LayerName.URL_INTELLIGENCE,
            score=score,
            confidence=URL_INTELLIGENCE_CONFIDENCE,
            signals=signals,
            processing_time_ms=elapsed_ms,
            metadata={"url_verdicts": verdicts, "raw_signal_count": len(raw_signals)},
        )
