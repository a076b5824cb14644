"""
MailShield Impossible Travel Detection

Flags consecutive logins whose implied travel speed exceeds what a person
could physically do.

Risk score (speed relative to the configured threshold, default 500 mph):
    1x - 2x     50 - 70
    2x - 4x     70 - 85
    4x - 10x    85 - 95
    beyond      95 - 100
then x0.6 when either IP is a VPN/datacenter range and x0.25 for a
whitelisted route.

Severity: critical >= 80, high >= 60, medium >= 40, otherwise low.
"""

import math
import time
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from mailshield.config.scoring import TravelConfig, get_scoring_config
from mailshield.models.ato import (
    AlertSeverity,
    GeoPoint,
    ImpossibleTravelAlert,
    LoginLocation,
    TravelCheckResult,
    TravelPattern,
)
from mailshield.models.signals import ATOSignalType, LayerName, LayerResult, Severity, Signal
from mailshield.utils.constants import EARTH_RADIUS_MILES
from mailshield.utils.helpers import ensure_aware, generate_id, utc_now

from .network import check_vpn_or_proxy

logger = logging.getLogger(__name__)


# =============================================================================
# GEOMETRY
# =============================================================================

def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(a)))


def time_difference_hours(first: datetime, second: datetime) -> float:
    return abs((ensure_aware(second) - ensure_aware(first)).total_seconds()) / 3600


def travel_speed(distance_miles: float, hours: float) -> float:
    """
    Miles per hour; infinite when no time has passed between distinct places.

    Zero distance is speed 0 even at zero elapsed time, so two logins from
    the same place in the same instant never count as impossible travel.
    """
    if distance_miles == 0:
        return 0.0
    if hours == 0:
        return math.inf
    return distance_miles / hours


def is_nearby(a: GeoPoint, b: GeoPoint, radius_miles: float) -> bool:
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude) <= radius_miles


# =============================================================================
# SCORING
# =============================================================================

_SPEED_BANDS = [
    # (upper ratio, score at lower bound, score at upper bound)
    (2.0, 50.0, 70.0),
    (4.0, 70.0, 85.0),
    (10.0, 85.0, 95.0),
]
_FINAL_SPAN = 20.0


def base_risk_score(speed_mph: float, threshold_mph: float) -> float:
    """Piecewise-linear score for a speed above threshold; 0 at or below it."""
    if speed_mph <= threshold_mph:
        return 0.0
    if math.isinf(speed_mph):
        return 100.0

    ratio = speed_mph / threshold_mph
    lower = 1.0
    for upper, start, end in _SPEED_BANDS:
        if ratio <= upper:
            return start + (ratio - lower) / (upper - lower) * (end - start)
        lower = upper
    return 95.0 + min((ratio - lower) / _FINAL_SPAN * 5.0, 5.0)


def calculate_risk_score(
    speed_mph: float,
    is_vpn: bool,
    is_known_pattern: bool,
    config: Optional[TravelConfig] = None,
) -> int:
    config = config or get_scoring_config().travel
    score = base_risk_score(speed_mph, config.max_speed_mph)
    if is_vpn:
        score *= config.vpn_factor
    if is_known_pattern:
        score *= config.known_pattern_factor
    return min(int(round(score)), 100)


def severity_for(risk_score: int) -> AlertSeverity:
    if risk_score >= 80:
        return AlertSeverity.CRITICAL
    if risk_score >= 60:
        return AlertSeverity.HIGH
    if risk_score >= 40:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


# =============================================================================
# DETECTOR
# =============================================================================

class ImpossibleTravelDetector:
    """Pairwise login analysis with per-user whitelisted routes."""

    def __init__(self, config: Optional[TravelConfig] = None):
        self.config = config or get_scoring_config().travel
        self.config.validate()
        self._exceptions: Dict[str, List[TravelPattern]] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Travel exceptions
    # -------------------------------------------------------------------------

    def add_travel_exception(self, pattern: TravelPattern) -> None:
        if pattern.created_at is None:
            pattern = pattern.model_copy(update={"created_at": utc_now()})
        with self._lock:
            self._exceptions.setdefault(pattern.user_id, []).append(pattern)
        logger.info(f"Added travel exception for {pattern.user_id}")

    def travel_exceptions(self, user_id: str) -> List[TravelPattern]:
        return list(self._exceptions.get(user_id, []))

    def clear_travel_exceptions(self, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._exceptions.clear()
            else:
                self._exceptions.pop(user_id, None)

    def is_known_pattern(self, user_id: str, origin: GeoPoint, destination: GeoPoint) -> bool:
        """True when the route matches a whitelisted pattern in either direction."""
        radius = self.config.pattern_radius_miles
        for pattern in self._exceptions.get(user_id, []):
            if is_nearby(origin, pattern.origin, radius) and is_nearby(destination, pattern.destination, radius):
                return True
            if is_nearby(origin, pattern.destination, radius) and is_nearby(destination, pattern.origin, radius):
                return True
        return False

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def check(self, previous: LoginLocation, current: LoginLocation) -> TravelCheckResult:
        """Analyze one pair of logins. Missing coordinates are never impossible."""
        if not (previous.has_coordinates and current.has_coordinates):
            logger.debug(f"Missing geo data for login pair of {current.user_id}")
            return TravelCheckResult(missing_geo_data=True)

        distance = haversine_distance(
            previous.latitude, previous.longitude, current.latitude, current.longitude,
        )
        hours = time_difference_hours(previous.timestamp, current.timestamp)
        speed = travel_speed(distance, hours)
        is_impossible = speed > self.config.max_speed_mph

        vpn_previous = check_vpn_or_proxy(previous.ip)
        vpn_current = check_vpn_or_proxy(current.ip)
        vpn = vpn_current if vpn_current.is_vpn else vpn_previous

        known = self.is_known_pattern(
            current.user_id,
            GeoPoint(latitude=previous.latitude, longitude=previous.longitude),
            GeoPoint(latitude=current.latitude, longitude=current.longitude),
        )

        risk_score = calculate_risk_score(speed, vpn.is_vpn, known, self.config) if is_impossible else 0

        return TravelCheckResult(
            is_impossible=is_impossible,
            distance_miles=round(distance, 2),
            time_diff_hours=round(hours, 4),
            speed_mph=speed,
            is_vpn_suspected=vpn.is_vpn,
            vpn_provider=vpn.provider,
            is_known_pattern=known,
            confidence=vpn.confidence,
            risk_score=risk_score,
            severity=severity_for(risk_score),
        )

    def build_alert(
        self, previous: LoginLocation, current: LoginLocation, result: TravelCheckResult
    ) -> ImpossibleTravelAlert:
        return ImpossibleTravelAlert(
            alert_id=generate_id("alert"),
            user_id=current.user_id,
            severity=result.severity,
            risk_score=result.risk_score,
            previous_login=previous,
            current_login=current,
            distance_miles=result.distance_miles,
            time_diff_hours=result.time_diff_hours,
            speed_mph=result.speed_mph,
            is_vpn_suspected=result.is_vpn_suspected,
            is_known_pattern=result.is_known_pattern,
            confidence=result.confidence,
            detected_at=utc_now(),
        )

    def analyze_login_sequence(
        self, user_id: str, logins: Sequence[LoginLocation]
    ) -> List[ImpossibleTravelAlert]:
        """Alerts for every impossible hop between consecutive logins."""
        if len(logins) < 2:
            return []

        ordered = sorted(logins, key=lambda login: ensure_aware(login.timestamp))
        alerts = []
        for previous, current in zip(ordered, ordered[1:]):
            result = self.check(previous, current)
            if result.is_impossible:
                alerts.append(self.build_alert(previous, current, result))

        if alerts:
            logger.warning(f"{len(alerts)} impossible travel alert(s) for {user_id}")
        return alerts

    def analyze(self, previous: LoginLocation, current: LoginLocation) -> LayerResult:
        """Check a login pair and wrap the outcome as the ATO LayerResult."""
        start = time.time()
        result = self.check(previous, current)
        return LayerResult(
            layer=LayerName.ATO,
            score=result.risk_score,
            confidence=result.confidence if not result.missing_geo_data else 0.0,
            signals=travel_signals(result, previous, current),
            processing_time_ms=(time.time() - start) * 1000,
            metadata={"travel": result.model_dump()},
        )


# =============================================================================
# SIGNALS
# =============================================================================

def travel_signals(
    result: TravelCheckResult, previous: LoginLocation, current: LoginLocation
) -> List[Signal]:
    if result.missing_geo_data:
        return [Signal(
            type=ATOSignalType.MISSING_GEO_DATA,
            severity=Severity.INFO,
            score=0,
            detail="Login pair lacks coordinates; travel could not be evaluated",
            metadata={"user_id": current.user_id},
        )]

    if not result.is_impossible:
        return []

    if result.severity == AlertSeverity.CRITICAL:
        severity = Severity.CRITICAL
    elif result.severity == AlertSeverity.LOW:
        severity = Severity.INFO
    else:
        severity = Severity.WARNING

    speed = "instant" if math.isinf(result.speed_mph) else f"{result.speed_mph:.0f} mph"
    detail = (
        f"{previous.label} to {current.label}: {result.distance_miles:.0f} miles "
        f"in {result.time_diff_hours:.2f}h ({speed})"
    )
    if result.is_vpn_suspected:
        detail += f"; VPN/datacenter IP ({result.vpn_provider})"
    if result.is_known_pattern:
        detail += "; known travel route"

    return [Signal(
        type=ATOSignalType.IMPOSSIBLE_TRAVEL,
        severity=severity,
        score=result.risk_score,
        detail=detail,
        metadata={
            "user_id": current.user_id,
            "distance_miles": result.distance_miles,
            "time_diff_hours": result.time_diff_hours,
            "is_vpn_suspected": result.is_vpn_suspected,
            "is_known_pattern": result.is_known_pattern,
        },
    )]
