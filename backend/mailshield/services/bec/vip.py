"""
MailShield VIP Directory

The impersonation detector talks to the VIP directory through the
``VIPDirectory`` protocol. ``InMemoryVIPDirectory`` is the in-process
implementation used by the API and tests; entries are partitioned by
tenant.
"""

import re
import logging
import threading
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from mailshield.models.impersonation import VIP, VIPImpersonationCheck, VIPRole
from mailshield.utils.constants import EXECUTIVE_TITLES, FINANCE_TITLES
from mailshield.utils.helpers import extract_domain_from_email, generate_id

logger = logging.getLogger(__name__)


NAME_CLEANUP = re.compile(r"[^a-z0-9\s]")
WHITESPACE = re.compile(r"\s+")

SPOOF_TITLE_KEYWORDS = ["ceo", "cfo", "president", "director", "chief"]


@runtime_checkable
class VIPDirectory(Protocol):
    """Tenant-scoped lookup of protected people."""

    async def find_by_email(self, tenant_id: str, email: str) -> Optional[VIP]:
        ...

    async def find_by_display_name(self, tenant_id: str, display_name: str) -> List[VIP]:
        ...

    async def check_impersonation(
        self, tenant_id: str, email: str, display_name: str
    ) -> VIPImpersonationCheck:
        ...


# =============================================================================
# NAME MATCHING
# =============================================================================

def normalize_display_name(name: str) -> str:
    cleaned = NAME_CLEANUP.sub("", (name or "").lower())
    return WHITESPACE.sub(" ", cleaned).strip()


def fuzzy_name_match(first: str, second: str) -> bool:
    """
    Match normalized names on equality, containment, or word overlap
    (two shared words, or half of the shorter name).
    """
    if not first or not second:
        return False
    if first == second or first in second or second in first:
        return True

    words1 = set(first.split(" "))
    words2 = set(second.split(" "))
    overlap = sum(1 for word in words1 if len(word) > 2 and word in words2)
    shortest = min(len(words1), len(words2))
    return overlap >= 2 or (shortest > 0 and overlap / shortest >= 0.5)


def impersonation_confidence(sender_email: str, sender_display_name: str, vip: VIP) -> float:
    confidence = 0.5

    if vip.role in (VIPRole.EXECUTIVE, VIPRole.FINANCE):
        confidence += 0.1

    sender_domain = extract_domain_from_email(sender_email)
    vip_domain = extract_domain_from_email(vip.email)
    if sender_domain and vip_domain and sender_domain != vip_domain:
        confidence += 0.2

    if normalize_display_name(sender_display_name) == normalize_display_name(vip.display_name):
        confidence += 0.15

    lowered = sender_display_name.lower()
    if any(keyword in lowered for keyword in SPOOF_TITLE_KEYWORDS):
        confidence += 0.1

    return min(confidence, 1.0)


def detect_potential_vip(display_name: str, title: Optional[str] = None) -> Tuple[bool, VIPRole, Optional[str]]:
    """Suggest a VIP role from a display name and title."""
    text = f"{display_name} {title or ''}".lower()
    for executive in EXECUTIVE_TITLES:
        if executive in text:
            return True, VIPRole.EXECUTIVE, executive
    for finance in FINANCE_TITLES:
        if finance in text:
            return True, VIPRole.FINANCE, finance
    return False, VIPRole.CUSTOM, None


# =============================================================================
# IN-MEMORY DIRECTORY
# =============================================================================

class InMemoryVIPDirectory:
    """Process-local VIP directory keyed by tenant."""

    def __init__(self, vips: Optional[List[VIP]] = None):
        self._vips: Dict[str, Dict[str, VIP]] = {}
        self._lock = threading.Lock()
        for vip in vips or []:
            self.add(vip)

    def add(self, vip: VIP) -> VIP:
        if vip.id is None:
            vip = vip.model_copy(update={"id": generate_id("vip")})
        with self._lock:
            self._vips.setdefault(vip.tenant_id, {})[vip.id] = vip
        return vip

    def remove(self, tenant_id: str, vip_id: str) -> bool:
        with self._lock:
            return self._vips.get(tenant_id, {}).pop(vip_id, None) is not None

    def list(self, tenant_id: str) -> List[VIP]:
        return list(self._vips.get(tenant_id, {}).values())

    def bulk_import(self, tenant_id: str, entries: List[Dict[str, str]]) -> int:
        """Import directory-sync entries, inferring roles from titles."""
        imported = 0
        for entry in entries:
            email = entry.get("email")
            display_name = entry.get("display_name")
            if not email or not display_name:
                logger.debug(f"Skipping incomplete VIP entry for tenant {tenant_id}")
                continue
            _, role, _ = detect_potential_vip(display_name, entry.get("title"))
            self.add(VIP(
                tenant_id=tenant_id,
                email=email.lower(),
                display_name=display_name,
                title=entry.get("title"),
                department=entry.get("department"),
                role=role,
            ))
            imported += 1
        logger.info(f"Imported {imported} VIPs for tenant {tenant_id}")
        return imported

    async def find_by_email(self, tenant_id: str, email: str) -> Optional[VIP]:
        address = email.lower()
        for vip in self.list(tenant_id):
            if vip.email.lower() == address or address in (a.lower() for a in vip.aliases):
                return vip
        return None

    async def find_by_display_name(self, tenant_id: str, display_name: str) -> List[VIP]:
        name = normalize_display_name(display_name)
        return [
            vip for vip in self.list(tenant_id)
            if fuzzy_name_match(name, normalize_display_name(vip.display_name))
        ]

    async def check_impersonation(
        self, tenant_id: str, email: str, display_name: str
    ) -> VIPImpersonationCheck:
        if await self.find_by_email(tenant_id, email):
            return VIPImpersonationCheck()

        matches = await self.find_by_display_name(tenant_id, display_name)
        if not matches:
            return VIPImpersonationCheck()

        vip = matches[0]
        confidence = impersonation_confidence(email, display_name, vip)
        return VIPImpersonationCheck(
            is_impersonation=confidence > 0.5,
            confidence=confidence,
            matched_vip=vip,
            reason=(
                f'Display name "{display_name}" matches VIP "{vip.display_name}" '
                f'but email "{email}" is not "{vip.email}"'
            ),
        )
