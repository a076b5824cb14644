"""
MailShield Account-Takeover Services
"""

from .impossible_travel import (
    ImpossibleTravelDetector,
    calculate_risk_score,
    haversine_distance,
    travel_signals,
)
from .network import VPNCheckResult, check_vpn_or_proxy

__all__ = [
    "ImpossibleTravelDetector",
    "calculate_risk_score",
    "haversine_distance",
    "travel_signals",
    "VPNCheckResult",
    "check_vpn_or_proxy",
]
