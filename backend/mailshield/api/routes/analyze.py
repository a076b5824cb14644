"""
MailShield Analyze API Routes

Full pipeline analysis of a parsed email, and click-time URL checks.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from mailshield.api.dependencies import get_baseline_store, get_click_time_checker, get_pipeline
from mailshield.models.behavior import EmailBehaviorData
from mailshield.models.email import ParsedEmail
from mailshield.models.url import WhoisData
from mailshield.services.behavioral.baseline import BaselineStore
from mailshield.services.enrichment.click_time import ClickTimeChecker
from mailshield.services.pipeline import AnalysisContext, EmailRiskPipeline
from mailshield.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyze", tags=["analyze"])


class AnalyzeRequest(BaseModel):
    """Parsed email plus the tenant context it arrived in."""
    email: ParsedEmail
    tenant_id: Optional[str] = None
    organization_domain: Optional[str] = None
    known_tracking_domains: List[str] = Field(default_factory=list)
    behavior: Optional[EmailBehaviorData] = None
    whois: Dict[str, WhoisData] = Field(default_factory=dict, description="Registration facts keyed by domain")
    first_contact: bool = False
    run_threat_intel: bool = True


class ClickCheckRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=4096)


async def run_analysis(
    request: AnalyzeRequest,
    pipeline: EmailRiskPipeline,
    baselines: BaselineStore,
) -> dict:
    baseline = None
    if request.behavior is not None:
        baseline = baselines.get(request.behavior.tenant_id)
        if baseline is None:
            logger.info(f"No baseline for tenant {request.behavior.tenant_id}; anomaly layer skipped")

    context = AnalysisContext(
        tenant_id=request.tenant_id,
        organization_domain=request.organization_domain,
        known_tracking_domains=request.known_tracking_domains,
        behavior=request.behavior,
        baseline=baseline,
        whois=request.whois,
        first_contact=request.first_contact,
        run_threat_intel=request.run_threat_intel,
    )
    result = await pipeline.analyze(request.email, context)
    return result.to_dict()


@router.post("")
async def analyze_email(
    request: AnalyzeRequest,
    pipeline: EmailRiskPipeline = Depends(get_pipeline),
    baselines: BaselineStore = Depends(get_baseline_store),
):
    """Run every applicable detection layer on a parsed email."""
    return await run_analysis(request, pipeline, baselines)


@router.post("/click")
async def check_click(
    request: ClickCheckRequest,
    checker: ClickTimeChecker = Depends(get_click_time_checker),
):
    """Click-time verdict for a rewritten link."""
    if not request.url.lower().startswith(("http://", "https://")):
        raise ValidationError("Only http(s) URLs can be checked")
    verdict = await checker.check(request.url)
    return verdict.to_dict()
