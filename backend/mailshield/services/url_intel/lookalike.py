"""
MailShield Lookalike Domain Detection

Detects domains built to pass for a protected brand:

- Unicode homoglyphs (Cyrillic/Greek letters, including punycode labels)
- ASCII character substitution (0 for o, 1 for l)
- character addition, omission and transposition
- hyphen insertion and TLD substitution
- brand names as subdomains of an unrelated domain
- brand keywords inside unrelated domains
- high-risk TLDs

Legitimate brand domains and their subdomains (login.microsoft.com) are
never flagged.
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from mailshield.models.url import LookalikeResult
from mailshield.utils.constants import (
    ASCII_CONFUSABLES,
    HIGH_RISK_TLDS,
    LEGITIMATE_BRAND_TLDS,
    PROTECTED_BRANDS,
    UNICODE_HOMOGLYPHS,
)
from mailshield.utils.helpers import domain_base, domain_matches

logger = logging.getLogger(__name__)


REVERSE_HOMOGLYPHS: Dict[str, str] = {
    glyph: latin for latin, glyphs in UNICODE_HOMOGLYPHS.items() for glyph in glyphs
}

NON_ASCII = re.compile(r"[^\x00-\x7f]")
TOKEN_SPLIT = re.compile(r"[.\-]")

# Brand names shorter than this must match a whole label token
MIN_SUBSTRING_BRAND_LENGTH = 4


@dataclass
class _Match:
    target: str
    technique: str
    risk_score: int
    signal: str


# ============================================================================
# Normalization
# ============================================================================

def decode_punycode(domain: str) -> str:
    """Decode ``xn--`` labels to Unicode; undecodable labels are kept as-is."""
    labels = []
    for label in domain.split("."):
        if label.startswith("xn--"):
            try:
                label = label.encode("ascii").decode("idna")
            except UnicodeError:
                logger.debug(f"Could not decode punycode label {label!r}")
        labels.append(label)
    return ".".join(labels)


def to_ascii_skeleton(text: str) -> str:
    """Replace every known homoglyph with the Latin letter it imitates."""
    return "".join(REVERSE_HOMOGLYPHS.get(ch, ch) for ch in text.lower())


def _is_substitution_of(candidate: str, target: str, table: Dict[str, List[str]]) -> bool:
    """Same length, at least one difference, every difference listed in table."""
    if len(candidate) != len(target) or candidate == target:
        return False
    for test_char, target_char in zip(candidate, target):
        if test_char != target_char and test_char not in table.get(target_char, []):
            return False
    return True


def is_unicode_homoglyph(candidate: str, target: str) -> bool:
    return _is_substitution_of(candidate, target, UNICODE_HOMOGLYPHS)


def is_ascii_substitution(candidate: str, target: str) -> bool:
    return _is_substitution_of(candidate, target, ASCII_CONFUSABLES)


def has_extra_character(candidate: str, target: str) -> bool:
    if len(candidate) != len(target) + 1:
        return False
    return any(candidate[:i] + candidate[i + 1:] == target for i in range(len(candidate)))


def has_omitted_character(candidate: str, target: str) -> bool:
    return has_extra_character(target, candidate)


def has_transposition(candidate: str, target: str) -> bool:
    if len(candidate) != len(target) or candidate == target:
        return False
    for i in range(len(target) - 1):
        swapped = target[:i] + target[i + 1] + target[i] + target[i + 2:]
        if swapped == candidate:
            return True
    return False


def _is_legitimate(domain: str, brand: str) -> bool:
    """The brand itself, one of its subdomains, or its name under a country/alt TLD."""
    if domain_matches(domain, brand):
        return True
    parts = domain.split(".")
    return (
        len(parts) == 2
        and parts[0] == domain_base(brand)
        and parts[1] in LEGITIMATE_BRAND_TLDS
    )


def _contains_brand(text: str, brand_name: str) -> bool:
    if len(brand_name) >= MIN_SUBSTRING_BRAND_LENGTH:
        return brand_name in text
    return brand_name in TOKEN_SPLIT.split(text)


# ============================================================================
# Techniques
# ============================================================================

def _check_homoglyph(decoded: str, brands: Dict[str, List[str]]) -> Optional[_Match]:
    base = domain_base(decoded)
    for brand in brands:
        if is_unicode_homoglyph(base, domain_base(brand)):
            return _Match(brand, "homoglyph", 9, "homoglyph_attack")

    skeleton = to_ascii_skeleton(decoded)
    if skeleton != decoded:
        for brand in brands:
            if _contains_brand(skeleton, domain_base(brand)):
                return _Match(brand, "homoglyph", 9, "homoglyph_attack")
    return None


def _check_brand_impersonation(domain: str, brands: Dict[str, List[str]]) -> Optional[_Match]:
    parts = domain.split(".")
    tld = parts[-1]
    base_domain = ".".join(parts[:-1])

    for brand, variations in brands.items():
        brand_name = domain_base(brand)
        brand_tld = brand.split(".")[-1]

        if base_domain == brand_name and tld != brand_tld:
            if tld not in LEGITIMATE_BRAND_TLDS:
                return _Match(brand, "tld_substitution", 6, "tld_substitution")
            continue

        if "-" in base_domain and base_domain.replace("-", "") == brand_name:
            return _Match(brand, "hyphen_insertion", 7, "hyphen_insertion")

        if len(brand_name) >= MIN_SUBSTRING_BRAND_LENGTH:
            if "-" not in base_domain and has_extra_character(base_domain, brand_name):
                return _Match(brand, "character_addition", 7, "character_addition")
            if has_omitted_character(base_domain, brand_name):
                return _Match(brand, "character_omission", 7, "character_omission")
            if has_transposition(base_domain, brand_name):
                return _Match(brand, "transposition", 7, "transposition")

        if is_ascii_substitution(base_domain, brand_name):
            return _Match(brand, "character_substitution", 8, "character_substitution")

        for variation in variations:
            if variation != brand_name and variation in base_domain:
                return _Match(brand, "character_substitution", 8, "character_substitution")
    return None


def _check_subdomain_impersonation(domain: str, brands: Dict[str, List[str]]) -> Optional[_Match]:
    parts = domain.split(".")
    if len(parts) < 4:
        return None
    registered = ".".join(parts[-2:])
    for brand in brands:
        brand_name = domain_base(brand)
        if registered == brand:
            continue
        for label in parts[:-2]:
            if _contains_brand(label, brand_name):
                return _Match(brand, "subdomain_impersonation", 8, "subdomain_impersonation")
    return None


def _check_brand_keywords(domain: str, brands: Dict[str, List[str]]) -> List[str]:
    found = []
    for brand in brands:
        if _contains_brand(domain, domain_base(brand)) and not domain_matches(domain, brand):
            found.append(brand)
    return found


# ============================================================================
# Public API
# ============================================================================

def detect_lookalike_domain(
    domain: str,
    targets: Optional[Iterable[str]] = None,
) -> LookalikeResult:
    """
    Detect lookalike/typosquatting domains.

    Args:
        domain: Hostname to check
        targets: Domains to protect; defaults to the built-in brand list

    Returns:
        LookalikeResult with the best-matching target and technique
    """
    if not domain:
        return LookalikeResult(domain="")

    brands: Dict[str, List[str]] = (
        {t.lower(): [] for t in targets} if targets is not None else PROTECTED_BRANDS
    )
    normalized = domain.lower().strip(".")
    if normalized.startswith("www."):
        normalized = normalized[4:]
    decoded = decode_punycode(normalized)

    if any(_is_legitimate(decoded, brand) for brand in brands):
        return LookalikeResult(domain=domain)

    signals: List[str] = []
    risk_score = 0

    if any(decoded.endswith(tld) for tld in HIGH_RISK_TLDS):
        risk_score += 5
        signals.append("high_risk_tld")

    match: Optional[_Match] = None
    if NON_ASCII.search(decoded) or "xn--" in normalized:
        signals.append("internationalized_domain")
        match = _check_homoglyph(decoded, brands)

    if match is None:
        match = _check_brand_impersonation(decoded, brands)
    if match is None:
        match = _check_subdomain_impersonation(decoded, brands)
    if match is None:
        found = _check_brand_keywords(decoded, brands)
        if found:
            match = _Match(found[0], "brand_keyword", 6, "brand_keyword_in_domain")
            if len(found) > 1:
                signals.append("brand_keyword_in_domain")
                match = _Match(found[0], "brand_keyword", 8, "multiple_brand_keywords")

    if match is None:
        return LookalikeResult(domain=domain, risk_score=min(10, risk_score), signals=signals)

    signals.append(match.signal)
    logger.debug(f"Lookalike domain {domain} -> {match.target} ({match.technique})")
    return LookalikeResult(
        domain=domain,
        is_lookalike=True,
        target_domain=match.target,
        technique=match.technique,
        risk_score=min(10, max(risk_score, match.risk_score)),
        signals=signals,
    )
