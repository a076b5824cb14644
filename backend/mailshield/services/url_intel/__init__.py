"""
MailShield URL Intelligence

Classification, lookalike, obfuscation, redirect-chain and domain-age
analysis. The composite analyzer lives in ``url_intel.analyzer``; it is
not re-exported here because it depends on the detection package, which
itself imports the classifier.
"""

from .classifier import classify_url, classify_urls, get_url_score_multiplier
from .domain_age import (
    DomainAgeCorrelator,
    analyze_domain_age,
    analyze_registration_timing,
    calculate_compound_domain_risk,
    correlate_domain_age,
    get_domain_age_risk_level,
    registration_timing_signal,
)
from .lookalike import detect_lookalike_domain
from .obfuscation import detect_url_obfuscation
from .redirects import analyze_redirect_chain, detect_cloaking, redirect_signals

__all__ = [
    "classify_url",
    "classify_urls",
    "get_url_score_multiplier",
    "DomainAgeCorrelator",
    "analyze_domain_age",
    "analyze_registration_timing",
    "calculate_compound_domain_risk",
    "correlate_domain_age",
    "get_domain_age_risk_level",
    "registration_timing_signal",
    "detect_lookalike_domain",
    "detect_url_obfuscation",
    "analyze_redirect_chain",
    "detect_cloaking",
    "redirect_signals",
]
