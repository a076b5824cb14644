"""
MailShield Anomaly Feedback API Routes
"""

import logging

from fastapi import APIRouter, Depends

from mailshield.api.dependencies import get_anomaly_detector
from mailshield.models.behavior import AnomalyFeedback
from mailshield.services.behavioral.anomaly import AnomalyDetector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/anomaly", tags=["anomaly"])


@router.post("/feedback", status_code=201)
async def record_feedback(
    feedback: AnomalyFeedback,
    detector: AnomalyDetector = Depends(get_anomaly_detector),
):
    """Append analyst feedback and return the tenant's current adjustments."""
    version = detector.record_feedback(feedback)
    table = detector.adjustments
    return {
        "version": version,
        "adjustments": [entry.to_dict() for entry in table.for_tenant(feedback.tenant_id)],
    }
