"""
MailShield URL Classifier

Context-aware classification of links as tracking, shortener, redirect,
malicious or safe. Marketing mail carries many tracking links; scoring
them like unknown links inflates risk, so every classification comes
with a trust level and a score multiplier.
"""

import re
import logging
from collections import Counter
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, urlparse

from mailshield.models.url import (
    TrustLevel,
    URLAnalysisSummary,
    URLClassification,
    URLType,
)
from mailshield.utils.constants import SHORTENER_DOMAINS
from mailshield.utils.helpers import domain_matches

logger = logging.getLogger(__name__)


# Known email-platform tracking patterns: (pattern, service)
TRACKING_PATTERNS = [
    (re.compile(r"/tc\?", re.I), "Quora tracking"),
    (re.compile(r"/qemail/", re.I), "Quora email"),
    (re.compile(r"\?utm_", re.I), "Google Analytics"),
    (re.compile(r"/click\?", re.I), "Click tracking"),
    (re.compile(r"/track\?", re.I), "Tracking pixel"),
    (re.compile(r"/open\?", re.I), "Open tracking"),
    (re.compile(r"\?mc_", re.I), "Mailchimp"),
    (re.compile(r"list-manage\.com", re.I), "Mailchimp"),
    (re.compile(r"sendgrid\.net", re.I), "SendGrid"),
    (re.compile(r"/wf/", re.I), "SendGrid webhook"),
    (re.compile(r"\?_hsenc=", re.I), "HubSpot"),
    (re.compile(r"\?_hsmi=", re.I), "HubSpot"),
    (re.compile(r"click\.linkedin\.com", re.I), "LinkedIn"),
    (re.compile(r"linkedin\.email", re.I), "LinkedIn"),
    (re.compile(r"email\.github\.com", re.I), "GitHub"),
    (re.compile(r"notifications\.github\.com", re.I), "GitHub"),
    (re.compile(r"substack\.com/redirect", re.I), "Substack"),
    (re.compile(r"medium\.com/m/", re.I), "Medium"),
]

# Checked before tracking patterns: (pattern, reason, score)
SUSPICIOUS_PATTERNS = [
    (re.compile(r"^javascript:", re.I), "JavaScript protocol", 10),
    (re.compile(r"^data:", re.I), "Data protocol", 10),
    (re.compile(r"^vbscript:", re.I), "VBScript protocol", 10),
    (re.compile(r"xn--", re.I), "Punycode (potential homograph)", 8),
    (re.compile(r"^https?://([^/]+\.){4,}", re.I), "Excessive subdomains", 7),
    (re.compile(r"^https?://\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}", re.I), "IP-based URL", 6),
    (re.compile(r":\d{4,5}/", re.I), "Non-standard port", 5),
    (re.compile(r"\.(exe|scr|bat|cmd|vbs|jar|zip|rar)\.(pdf|doc|xls|jpg|png)", re.I), "Double extension", 9),
    (re.compile(r"g[o0]{2}gle", re.I), "Typosquatting (Google)", 9),
    (re.compile(r"microso[f0]t", re.I), "Typosquatting (Microsoft)", 9),
    (re.compile(r"amazo[n0]", re.I), "Typosquatting (Amazon)", 9),
]

# Scheme-less or script schemes that are still classifiable
SCRIPT_SCHEMES = ("javascript", "data", "vbscript")

REDIRECT_PARAMS = {"url", "u", "redirect", "redirect_url", "redirect_uri", "goto", "next", "target", "dest", "link"}


# Correct spellings the typosquat patterns above also match
TYPOSQUAT_BRAND_SPELLINGS = {"google", "microsoft", "amazon"}


def _pattern_hit(pattern: "re.Pattern", reason: str, url: str) -> bool:
    for match in pattern.finditer(url):
        if reason.startswith("Typosquatting") and match.group(0).lower() in TYPOSQUAT_BRAND_SPELLINGS:
            continue
        return True
    return False


def _has_redirect_param(query: str) -> bool:
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key.lower() in REDIRECT_PARAMS and value.lower().startswith(("http://", "https://")):
            return True
    return False


def classify_url(
    url: str,
    sender_domain: str = "",
    known_tracking_domains: Optional[Iterable[str]] = None,
) -> URLClassification:
    """
    Classify a URL based on its patterns, sender domain and known tracking domains.

    Order: tenant tracking allow-list, suspicious patterns, platform tracking
    patterns, sender-domain match, shorteners, redirect parameters, default.
    An unparseable URL is returned as low-trust with score 5 and
    ``metadata["parse_error"] = True``.
    """
    try:
        parsed = urlparse(url)
        hostname = (parsed.hostname or "").lower()
    except ValueError as e:
        return _invalid(url, str(e))

    scheme = parsed.scheme.lower()
    if not scheme or (scheme not in SCRIPT_SCHEMES and not hostname):
        return _invalid(url, "missing scheme or host")

    sender_domain = (sender_domain or "").lower()

    for domain in known_tracking_domains or []:
        if hostname and domain_matches(hostname, domain):
            return URLClassification(
                url=url,
                type=URLType.TRACKING,
                trust_level=TrustLevel.HIGH,
                reason="URL from known tracking domain for this sender",
                score=0,
                metadata={"known_domain": True, "sender_match": True},
            )

    for pattern, reason, score in SUSPICIOUS_PATTERNS:
        if _pattern_hit(pattern, reason, url):
            return URLClassification(
                url=url,
                type=URLType.MALICIOUS,
                trust_level=TrustLevel.LOW,
                reason=reason,
                score=score,
                metadata={"pattern": pattern.pattern},
            )

    for pattern, service in TRACKING_PATTERNS:
        if pattern.search(url):
            return URLClassification(
                url=url,
                type=URLType.TRACKING,
                trust_level=TrustLevel.MEDIUM,
                reason=f"Legitimate {service} tracking URL",
                score=0,
                metadata={"pattern": pattern.pattern, "service": service},
            )

    if sender_domain and domain_matches(hostname, sender_domain):
        return URLClassification(
            url=url,
            type=URLType.SAFE,
            trust_level=TrustLevel.HIGH,
            reason="URL matches sender domain",
            score=0,
            metadata={"sender_match": True},
        )

    if any(domain_matches(hostname, s) for s in SHORTENER_DOMAINS):
        return URLClassification(
            url=url,
            type=URLType.SHORTENER,
            trust_level=TrustLevel.MEDIUM,
            reason="URL shortener detected",
            score=2,
        )

    if _has_redirect_param(parsed.query):
        return URLClassification(
            url=url,
            type=URLType.REDIRECT,
            trust_level=TrustLevel.MEDIUM,
            reason="URL carries an embedded redirect target",
            score=3,
        )

    return URLClassification(
        url=url,
        type=URLType.SAFE,
        trust_level=TrustLevel.MEDIUM,
        reason="No suspicious patterns detected",
        score=1,
    )


def _invalid(url: str, error: str) -> URLClassification:
    logger.debug(f"Unparseable URL {url!r}: {error}")
    return URLClassification(
        url=url,
        type=URLType.SAFE,
        trust_level=TrustLevel.LOW,
        reason=f"Invalid URL format: {error}",
        score=5,
        metadata={"parse_error": True},
    )


def classify_urls(
    urls: List[str],
    sender_domain: str = "",
    known_tracking_domains: Optional[Iterable[str]] = None,
) -> URLAnalysisSummary:
    """Classify multiple URLs and aggregate the results."""
    known = list(known_tracking_domains or [])
    classifications = [classify_url(url, sender_domain, known) for url in urls]

    by_type = Counter({t.value: 0 for t in URLType})
    by_trust = Counter({t.value: 0 for t in TrustLevel})
    for c in classifications:
        by_type[c.type.value] += 1
        by_trust[c.trust_level.value] += 1

    scores = [c.score for c in classifications]
    return URLAnalysisSummary(
        total=len(urls),
        by_type=dict(by_type),
        by_trust_level=dict(by_trust),
        classifications=classifications,
        average_score=sum(scores) / len(scores) if scores else 0.0,
        max_score=max(scores) if scores else 0,
        suspicious_count=sum(1 for s in scores if s >= 5),
    )


def get_url_score_multiplier(classification: URLClassification) -> float:
    """Scoring multiplier for a classification; 0 for trusted tracking links."""
    url_type = classification.type
    trust = classification.trust_level

    if url_type == URLType.TRACKING and trust == TrustLevel.HIGH:
        return 0.0
    if url_type == URLType.TRACKING and trust == TrustLevel.MEDIUM:
        return 0.2
    if url_type == URLType.SAFE and trust == TrustLevel.HIGH:
        return 0.1
    if url_type == URLType.SAFE and trust == TrustLevel.MEDIUM:
        return 0.5
    if url_type in (URLType.REDIRECT, URLType.SHORTENER):
        return 0.8
    if url_type == URLType.MALICIOUS:
        return 2.0
    return 1.0
