"""
MailShield Webhook API Routes

Signed ingestion: the sender signs ``"{timestamp}.{body}"`` with the
shared secret and the email is analyzed once the signature checks out.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError

from mailshield.api.dependencies import get_baseline_store, get_pipeline
from mailshield.api.routes.analyze import AnalyzeRequest, run_analysis
from mailshield.config.settings import get_settings
from mailshield.services.behavioral.baseline import BaselineStore
from mailshield.services.pipeline import EmailRiskPipeline
from mailshield.utils.constants import WEBHOOK_SIGNATURE_HEADER, WEBHOOK_TIMESTAMP_HEADER
from mailshield.utils.exceptions import WebhookSignatureError
from mailshield.utils.security import parse_and_verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/email")
async def ingest_email(
    request: Request,
    pipeline: EmailRiskPipeline = Depends(get_pipeline),
    baselines: BaselineStore = Depends(get_baseline_store),
):
    """Verify a signed ``email.received`` webhook and analyze its email."""
    settings = get_settings()
    if not settings.webhook_secret:
        raise HTTPException(status_code=503, detail="Webhook secret not configured")

    body = (await request.body()).decode("utf-8", errors="replace")
    payload = parse_and_verify_webhook(
        body,
        request.headers.get(WEBHOOK_SIGNATURE_HEADER, ""),
        request.headers.get(WEBHOOK_TIMESTAMP_HEADER, ""),
        settings.webhook_secret,
        tolerance_seconds=settings.webhook_tolerance_seconds,
        future_skew_seconds=settings.webhook_future_skew_seconds,
    )

    try:
        analyze_request = AnalyzeRequest.model_validate(payload.get("data") or {})
    except PydanticValidationError as e:
        raise WebhookSignatureError(
            f"Webhook data is not a valid analysis request: {e.error_count()} error(s)",
            WebhookSignatureError.INVALID_PAYLOAD,
        )

    logger.info(f"Webhook {payload.get('event', 'unknown')} accepted")
    return await run_analysis(analyze_request, pipeline, baselines)
