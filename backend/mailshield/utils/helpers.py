"""
MailShield Helper Functions

Utility functions used throughout the application.
"""

import re
import uuid
import ipaddress
from datetime import datetime, timezone
from typing import Optional, List, Iterable
from urllib.parse import urlparse


URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
HTML_TAG_PATTERN = re.compile(r"<[^>]*>")
WHITESPACE_PATTERN = re.compile(r"\s+")


# ============================================================================
# ID and Timestamp Generation
# ============================================================================

def generate_id(prefix: str = "") -> str:
    """Generate a unique identifier, optionally prefixed (``alert_3f2a...``)."""
    token = uuid.uuid4().hex
    return f"{prefix}_{token}" if prefix else token


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ============================================================================
# Numeric helpers
# ============================================================================

def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Saturate value into [low, high]."""
    return max(low, min(high, value))


def clamp_score(value: float) -> int:
    """Round and saturate a score into 0-100."""
    return int(round(clamp(value, 0, 100)))


# ============================================================================
# Domain and URL Extraction
# ============================================================================

def extract_domain_from_email(email: str) -> Optional[str]:
    """Extract domain from email address."""
    if not email or '@' not in email:
        return None
    domain = email.rsplit('@', 1)[1].lower().strip().strip('>')
    return domain or None


def extract_hostname(url: str) -> Optional[str]:
    """Extract lowercase hostname from URL, None when it cannot be parsed."""
    if not url:
        return None
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def registrable_domain(hostname: str) -> str:
    """Naive eTLD+1: the last two labels of the hostname."""
    parts = hostname.lower().strip('.').split('.')
    return '.'.join(parts[-2:])


def domain_base(domain: str) -> str:
    """First label of a domain (``paypal`` for ``paypal.com``)."""
    return domain.lower().split('.')[0]


def domain_matches(hostname: str, domain: str) -> bool:
    """True when hostname equals domain or is one of its subdomains."""
    hostname = hostname.lower()
    domain = domain.lower()
    return hostname == domain or hostname.endswith(f".{domain}")


def is_ip_address(value: str) -> bool:
    """Check if value is a literal IPv4/IPv6 address."""
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def normalize_indicator(indicator: str) -> str:
    """Normalize a URL or domain for use as a cache key."""
    value = indicator.strip()
    if '://' not in value:
        return value.lower().rstrip('.')
    parsed = urlparse(value)
    netloc = parsed.netloc.lower()
    path = parsed.path.rstrip('/') or ''
    normalized = f"{parsed.scheme.lower()}://{netloc}{path}"
    if parsed.query:
        normalized += f"?{parsed.query}"
    return normalized


def extract_urls(text: str) -> List[str]:
    """Extract unique http(s) URLs from text, preserving order."""
    if not text:
        return []
    return unique(URL_PATTERN.findall(text))


def strip_html(html: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    if not html:
        return ""
    text = HTML_TAG_PATTERN.sub(' ', html)
    return WHITESPACE_PATTERN.sub(' ', text).strip()


def unique(items: Iterable[str]) -> List[str]:
    """Order-preserving de-duplication."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


# ============================================================================
# String distance
# ============================================================================

def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein edit distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]
