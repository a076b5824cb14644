"""
MailShield VPN / Datacenter Heuristics

Prefix matching against known hosting and VPN ranges. A login from one of
these ranges says little about where the user actually is.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from mailshield.utils.constants import DATACENTER_IP_RANGES

VPN_MATCH_CONFIDENCE = 0.85
NO_MATCH_CONFIDENCE = 0.7


@dataclass(frozen=True)
class VPNCheckResult:
    is_vpn: bool
    provider: Optional[str]
    confidence: float


def check_vpn_or_proxy(
    ip: Optional[str],
    ranges: Optional[Dict[str, List[str]]] = None,
) -> VPNCheckResult:
    """Match an IPv4 address against provider prefixes."""
    if ip:
        for provider, prefixes in (ranges or DATACENTER_IP_RANGES).items():
            if any(ip.startswith(prefix) for prefix in prefixes):
                return VPNCheckResult(True, provider, VPN_MATCH_CONFIDENCE)
    return VPNCheckResult(False, None, NO_MATCH_CONFIDENCE)
