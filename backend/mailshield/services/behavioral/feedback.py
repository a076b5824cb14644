"""
MailShield Anomaly Feedback

Analyst verdicts are appended to a FeedbackLog and never edited. The
AdjustmentTable is a derived, versioned view over the log: for every
(tenant, dimension) it holds the false-positive rate and sample count the
detector uses to dampen that dimension's contribution.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from mailshield.models.behavior import AnomalyFeedback, AnomalyType, FeedbackType
from mailshield.utils.helpers import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DimensionAdjustment:
    """Feedback statistics for one tenant and dimension."""

    tenant_id: str
    dimension: AnomalyType
    false_positive_count: int
    true_positive_count: int

    @property
    def sample_count(self) -> int:
        return self.false_positive_count + self.true_positive_count

    @property
    def false_positive_rate(self) -> float:
        if self.sample_count == 0:
            return 0.0
        return self.false_positive_count / self.sample_count

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "dimension": self.dimension.value,
            "false_positive_count": self.false_positive_count,
            "true_positive_count": self.true_positive_count,
            "sample_count": self.sample_count,
            "false_positive_rate": round(self.false_positive_rate, 3),
        }


class AdjustmentTable:
    """Immutable snapshot of per-dimension feedback at a given log version."""

    def __init__(self, entries: Dict[Tuple[str, AnomalyType], DimensionAdjustment], version: int):
        self._entries = dict(entries)
        self.version = version

    def get(self, tenant_id: str, dimension: AnomalyType) -> Optional[DimensionAdjustment]:
        return self._entries.get((tenant_id, dimension))

    def for_tenant(self, tenant_id: str) -> List[DimensionAdjustment]:
        return [entry for (tenant, _), entry in self._entries.items() if tenant == tenant_id]

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def empty(cls) -> "AdjustmentTable":
        return cls({}, version=0)


class FeedbackLog:
    """
    Append-only feedback store.

    The version equals the number of records appended, so an
    AdjustmentTable built at version N reflects exactly the first N
    records.
    """

    def __init__(self):
        self._records: List[AnomalyFeedback] = []
        self._lock = threading.Lock()

    def append(self, feedback: AnomalyFeedback) -> int:
        if feedback.recorded_at is None:
            feedback = feedback.model_copy(update={"recorded_at": utc_now()})
        with self._lock:
            self._records.append(feedback)
            version = len(self._records)
        logger.info(
            f"Recorded {feedback.feedback_type.value} feedback for {feedback.email_id} "
            f"({', '.join(t.value for t in feedback.anomaly_types)})"
        )
        return version

    @property
    def version(self) -> int:
        return len(self._records)

    def records(self, tenant_id: Optional[str] = None) -> List[AnomalyFeedback]:
        with self._lock:
            snapshot = list(self._records)
        if tenant_id is None:
            return snapshot
        return [r for r in snapshot if r.tenant_id == tenant_id]

    def __iter__(self) -> Iterator[AnomalyFeedback]:
        return iter(self.records())

    def __len__(self) -> int:
        return self.version


def build_adjustment_table(log: FeedbackLog) -> AdjustmentTable:
    """Recompute the adjustment table from the full feedback log."""
    records = log.records()
    counts: Dict[Tuple[str, AnomalyType], List[int]] = defaultdict(lambda: [0, 0])

    for record in records:
        slot = 0 if record.feedback_type == FeedbackType.FALSE_POSITIVE else 1
        for dimension in set(record.anomaly_types):
            counts[(record.tenant_id, dimension)][slot] += 1

    entries = {
        key: DimensionAdjustment(
            tenant_id=key[0],
            dimension=key[1],
            false_positive_count=fp,
            true_positive_count=tp,
        )
        for key, (fp, tp) in counts.items()
    }
    return AdjustmentTable(entries, version=len(records))
