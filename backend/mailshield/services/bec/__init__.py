"""
MailShield BEC Services

Executive impersonation detection and the VIP directory it queries.
"""

from .impersonation import ImpersonationDetector, calculate_impersonation_risk, check_cousin_domain
from .vip import InMemoryVIPDirectory, VIPDirectory, detect_potential_vip

__all__ = [
    "ImpersonationDetector",
    "calculate_impersonation_risk",
    "check_cousin_domain",
    "InMemoryVIPDirectory",
    "VIPDirectory",
    "detect_potential_vip",
]
