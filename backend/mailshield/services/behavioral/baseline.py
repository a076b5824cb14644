"""
MailShield Tenant Baselines

Builds a TenantBaseline from historical send records and keeps the
current baseline per tenant. Baselines are recomputed out of band and
swapped in whole; detectors only ever read them.
"""

import math
import logging
import threading
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from mailshield.models.behavior import HistoricalSendRecord, TenantBaseline, VolumeStats
from mailshield.utils.helpers import ensure_aware, extract_domain_from_email, utc_now

logger = logging.getLogger(__name__)


TOP_RECIPIENTS = 50
TOP_SENDERS = 20
SUBJECT_PATTERN_WORDS = 3
SUBJECT_PATTERN_MIN_COUNT = 2
MAX_SUBJECT_PATTERNS = 20


def _subject_prefix(subject: str) -> Optional[str]:
    words = subject.lower().split()
    if not words:
        return None
    return " ".join(words[:SUBJECT_PATTERN_WORDS])


def calculate_baseline(
    tenant_id: str,
    records: Iterable[HistoricalSendRecord],
    now: Optional[datetime] = None,
) -> TenantBaseline:
    """
    Derive a tenant baseline from its send history.

    Daily volume uses the population standard deviation over days that
    had any mail. With no history the hourly distribution is uniform and
    the volume statistics are zero, which disables the volume check.
    """
    records = list(records)
    calculated_at = now or utc_now()

    if not records:
        logger.info(f"No history for tenant {tenant_id}; using an empty baseline")
        return TenantBaseline(
            tenant_id=tenant_id,
            daily_email_volume=VolumeStats(mean=0.0, std_dev=0.0),
            calculated_at=calculated_at,
        )

    per_day: Counter = Counter()
    per_hour = [0] * 24
    weekend = 0
    recipients: Counter = Counter()
    senders: Counter = Counter()
    domains: Counter = Counter()
    prefixes: Counter = Counter()

    for record in records:
        sent_at = ensure_aware(record.sent_at)
        per_day[sent_at.date()] += 1
        per_hour[sent_at.hour] += 1
        if sent_at.weekday() >= 5:
            weekend += 1
        if record.sender:
            senders[record.sender.lower()] += 1
        for recipient in record.recipients:
            address = recipient.lower()
            recipients[address] += 1
            domain = extract_domain_from_email(address)
            if domain:
                domains[domain] += 1
        if record.subject:
            prefix = _subject_prefix(record.subject)
            if prefix:
                prefixes[prefix] += 1

    volumes = list(per_day.values())
    mean = sum(volumes) / len(volumes)
    variance = sum((v - mean) ** 2 for v in volumes) / len(volumes)

    total = len(records)
    baseline = TenantBaseline(
        tenant_id=tenant_id,
        daily_email_volume=VolumeStats(mean=mean, std_dev=math.sqrt(variance)),
        hourly_distribution=[count / total for count in per_hour],
        top_recipients=[r for r, _ in recipients.most_common(TOP_RECIPIENTS)],
        top_senders=[s for s, _ in senders.most_common(TOP_SENDERS)],
        known_recipient_domains=sorted(domains),
        subject_patterns=[
            p for p, count in prefixes.most_common(MAX_SUBJECT_PATTERNS)
            if count >= SUBJECT_PATTERN_MIN_COUNT
        ],
        weekend_activity=weekend / total,
        calculated_at=calculated_at,
    )
    logger.info(
        f"Calculated baseline for {tenant_id}: {total} emails over {len(volumes)} days, "
        f"mean {mean:.1f}/day"
    )
    return baseline


class BaselineStore:
    """In-process tenant baseline store; one current baseline per tenant."""

    def __init__(self, baselines: Optional[Iterable[TenantBaseline]] = None):
        self._baselines: Dict[str, TenantBaseline] = {}
        self._lock = threading.Lock()
        for baseline in baselines or []:
            self.replace(baseline)

    def get(self, tenant_id: str) -> Optional[TenantBaseline]:
        return self._baselines.get(tenant_id)

    def replace(self, baseline: TenantBaseline) -> None:
        with self._lock:
            self._baselines[baseline.tenant_id] = baseline

    def rebuild(
        self, tenant_id: str, records: Iterable[HistoricalSendRecord], now: Optional[datetime] = None
    ) -> TenantBaseline:
        baseline = calculate_baseline(tenant_id, records, now)
        self.replace(baseline)
        return baseline

    def tenants(self) -> List[str]:
        return sorted(self._baselines)
