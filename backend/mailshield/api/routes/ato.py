"""
MailShield Account-Takeover API Routes
"""

import math
import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from mailshield.api.dependencies import get_travel_detector
from mailshield.models.ato import ImpossibleTravelAlert, LoginLocation, TravelPattern
from mailshield.services.ato.impossible_travel import ImpossibleTravelDetector, travel_signals

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ato", tags=["ato"])


class TravelCheckRequest(BaseModel):
    previous: LoginLocation
    current: LoginLocation


class LoginSequenceRequest(BaseModel):
    user_id: str
    logins: List[LoginLocation] = Field(..., min_length=1)


def _finite(value: float):
    """JSON has no infinity; instantaneous travel is reported as null."""
    return None if math.isinf(value) else round(value, 2)


def _alert_dict(alert: ImpossibleTravelAlert) -> dict:
    data = alert.model_dump(mode="json", exclude={"speed_mph"})
    data["speed_mph"] = _finite(alert.speed_mph)
    return data


@router.post("/check")
async def check_travel(
    request: TravelCheckRequest,
    detector: ImpossibleTravelDetector = Depends(get_travel_detector),
):
    """Evaluate one pair of logins for impossible travel."""
    result = detector.check(request.previous, request.current)
    response = result.model_dump(mode="json", exclude={"speed_mph"})
    response["speed_mph"] = _finite(result.speed_mph)
    response["signals"] = [
        s.model_dump(mode="json")
        for s in travel_signals(result, request.previous, request.current)
    ]
    if result.is_impossible:
        alert = detector.build_alert(request.previous, request.current, result)
        response["alert"] = _alert_dict(alert)
    return response


@router.post("/sequence")
async def analyze_sequence(
    request: LoginSequenceRequest,
    detector: ImpossibleTravelDetector = Depends(get_travel_detector),
):
    """Alerts for every impossible hop in a user's login history."""
    alerts = detector.analyze_login_sequence(request.user_id, request.logins)
    return {"user_id": request.user_id, "alerts": [_alert_dict(a) for a in alerts]}


@router.post("/exceptions", status_code=201)
async def add_travel_exception(
    pattern: TravelPattern,
    detector: ImpossibleTravelDetector = Depends(get_travel_detector),
):
    """Whitelist a recurring route for a user."""
    detector.add_travel_exception(pattern)
    return {
        "user_id": pattern.user_id,
        "exceptions": len(detector.travel_exceptions(pattern.user_id)),
    }
