"""
MailShield Account-Takeover Tests

Tests for impossible travel detection, VPN heuristics and travel exceptions.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from mailshield.config.scoring import TravelConfig
from mailshield.models.ato import AlertSeverity, GeoPoint, LoginLocation, TravelPattern
from mailshield.models.signals import ATOSignalType, LayerName, Severity
from mailshield.services.ato import (
    ImpossibleTravelDetector,
    calculate_risk_score,
    check_vpn_or_proxy,
    haversine_distance,
)
from mailshield.services.ato.impossible_travel import base_risk_score, severity_for, travel_speed
from mailshield.utils.exceptions import ConfigurationError


T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

NEW_YORK = (40.7128, -74.0060)
LONDON = (51.5074, -0.1278)
BOSTON = (42.3601, -71.0589)


def login(where, at, user_id="user-1", ip="203.0.113.10", city=None):
    return LoginLocation(
        user_id=user_id,
        timestamp=at,
        ip=ip,
        latitude=where[0],
        longitude=where[1],
        city=city,
    )


class TestGeometry:
    """Tests for distance and speed helpers."""

    def test_new_york_to_london(self):
        distance = haversine_distance(*NEW_YORK, *LONDON)
        assert distance == pytest.approx(3459, abs=15)

    def test_symmetric(self):
        assert haversine_distance(*NEW_YORK, *LONDON) == pytest.approx(haversine_distance(*LONDON, *NEW_YORK))

    def test_same_point(self):
        assert haversine_distance(*BOSTON, *BOSTON) == 0

    def test_speed(self):
        assert travel_speed(0, 0) == 0.0
        assert travel_speed(100, 0) == math.inf
        assert travel_speed(100, 2) == 50.0


class TestRiskScore:
    """Tests for the speed-to-risk mapping."""

    @pytest.mark.parametrize("speed, expected", [
        (1000, 70),
        (2000, 85),
        (5000, 95),
        (math.inf, 100),
    ])
    def test_band_edges(self, speed, expected):
        assert calculate_risk_score(speed, False, False, TravelConfig()) == expected

    def test_at_threshold_is_zero(self):
        assert base_risk_score(500, 500) == 0
        assert calculate_risk_score(500, False, False, TravelConfig()) == 0
        assert calculate_risk_score(501, False, False, TravelConfig()) == 50

    def test_monotonic(self):
        speeds = [501, 750, 1000, 1500, 2500, 4000, 6000, 12000, 50000]
        scores = [calculate_risk_score(s, False, False, TravelConfig()) for s in speeds]
        assert scores == sorted(scores)
        assert all(0 <= s <= 100 for s in scores)

    def test_vpn_and_known_pattern_reduce(self):
        config = TravelConfig()
        assert calculate_risk_score(1000, True, False, config) == 42
        assert calculate_risk_score(1000, False, True, config) == 18
        assert calculate_risk_score(1000, True, True, config) == round(70 * 0.6 * 0.25)

    @pytest.mark.parametrize("score, severity", [
        (95, AlertSeverity.CRITICAL),
        (80, AlertSeverity.CRITICAL),
        (60, AlertSeverity.HIGH),
        (40, AlertSeverity.MEDIUM),
        (39, AlertSeverity.LOW),
    ])
    def test_severity(self, score, severity):
        assert severity_for(score) == severity

    def test_invalid_config(self):
        with pytest.raises(ConfigurationError):
            ImpossibleTravelDetector(TravelConfig(vpn_factor=1.5))


class TestVPNDetection:
    """Tests for datacenter and VPN range matching."""

    def test_aws_range(self):
        result = check_vpn_or_proxy("52.1.2.3")
        assert result.is_vpn
        assert result.provider == "AWS"
        assert result.confidence == 0.85

    def test_residential_ip(self):
        result = check_vpn_or_proxy("203.0.113.10")
        assert not result.is_vpn
        assert result.provider is None
        assert result.confidence == 0.7

    def test_no_ip(self):
        assert not check_vpn_or_proxy(None).is_vpn

    def test_custom_ranges(self):
        result = check_vpn_or_proxy("10.9.8.7", {"Corp VPN": ["10.9."]})
        assert result.provider == "Corp VPN"


class TestImpossibleTravelDetector:
    """Tests for pairwise login analysis."""

    def test_transatlantic_in_one_hour(self):
        detector = ImpossibleTravelDetector()
        result = detector.check(login(NEW_YORK, T0), login(LONDON, T0 + timedelta(hours=1)))
        assert result.is_impossible
        assert result.speed_mph > 3000
        assert result.severity == AlertSeverity.CRITICAL
        assert result.risk_score >= 85

    def test_reasonable_flight(self):
        detector = ImpossibleTravelDetector()
        result = detector.check(login(NEW_YORK, T0), login(LONDON, T0 + timedelta(hours=8)))
        assert not result.is_impossible
        assert result.risk_score == 0

    def test_same_place_same_time(self):
        detector = ImpossibleTravelDetector()
        result = detector.check(login(BOSTON, T0), login(BOSTON, T0))
        assert result.speed_mph == 0
        assert not result.is_impossible

    def test_instant_hop(self):
        detector = ImpossibleTravelDetector()
        result = detector.check(login(NEW_YORK, T0), login(BOSTON, T0))
        assert math.isinf(result.speed_mph)
        assert result.risk_score == 100

    def test_vpn_lowers_risk(self):
        detector = ImpossibleTravelDetector()
        plain = detector.check(login(NEW_YORK, T0), login(LONDON, T0 + timedelta(hours=1)))
        vpn = detector.check(
            login(NEW_YORK, T0), login(LONDON, T0 + timedelta(hours=1), ip="185.153.1.1"),
        )
        assert vpn.is_vpn_suspected
        assert vpn.vpn_provider == "NordVPN"
        assert vpn.confidence == 0.85
        assert vpn.risk_score < plain.risk_score

    def test_missing_coordinates(self):
        detector = ImpossibleTravelDetector()
        previous = LoginLocation(user_id="user-1", timestamp=T0, ip="203.0.113.10")
        result = detector.check(previous, login(LONDON, T0 + timedelta(minutes=5)))
        assert result.missing_geo_data
        assert not result.is_impossible

    def test_naive_timestamps_treated_as_utc(self):
        detector = ImpossibleTravelDetector()
        naive = datetime(2026, 6, 1, 13, 0)
        result = detector.check(login(NEW_YORK, T0), login(LONDON, naive))
        assert result.time_diff_hours == 1.0


class TestTravelExceptions:
    """Tests for whitelisted travel routes."""

    def _detector_with_route(self):
        detector = ImpossibleTravelDetector()
        detector.add_travel_exception(TravelPattern(
            user_id="user-1",
            origin=GeoPoint(latitude=NEW_YORK[0], longitude=NEW_YORK[1], label="NYC office"),
            destination=GeoPoint(latitude=LONDON[0], longitude=LONDON[1], label="London office"),
            added_by="admin@company.com",
        ))
        return detector

    def test_known_route_lowers_risk(self):
        detector = self._detector_with_route()
        result = detector.check(login(NEW_YORK, T0), login(LONDON, T0 + timedelta(hours=1)))
        assert result.is_impossible
        assert result.is_known_pattern
        assert result.risk_score < 30

    def test_known_route_reverse_direction(self):
        detector = self._detector_with_route()
        result = detector.check(login(LONDON, T0), login(NEW_YORK, T0 + timedelta(hours=1)))
        assert result.is_known_pattern

    def test_route_is_per_user(self):
        detector = self._detector_with_route()
        result = detector.check(
            login(NEW_YORK, T0, user_id="user-2"),
            login(LONDON, T0 + timedelta(hours=1), user_id="user-2"),
        )
        assert not result.is_known_pattern

    def test_nearby_endpoints_match(self):
        detector = self._detector_with_route()
        newark = (40.7357, -74.1724)
        assert detector.is_known_pattern(
            "user-1",
            GeoPoint(latitude=newark[0], longitude=newark[1]),
            GeoPoint(latitude=LONDON[0], longitude=LONDON[1]),
        )

    def test_exception_management(self):
        detector = self._detector_with_route()
        patterns = detector.travel_exceptions("user-1")
        assert len(patterns) == 1
        assert patterns[0].created_at is not None
        detector.clear_travel_exceptions("user-1")
        assert detector.travel_exceptions("user-1") == []


class TestLoginSequence:
    """Tests for multi-login analysis and the ATO layer."""

    def test_sequence_sorted_before_pairing(self):
        detector = ImpossibleTravelDetector()
        logins = [
            login(LONDON, T0 + timedelta(hours=10), city="London"),
            login(NEW_YORK, T0, city="New York"),
            login(LONDON, T0 + timedelta(hours=1), city="London"),
        ]
        alerts = detector.analyze_login_sequence("user-1", logins)
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.previous_login.city == "New York"
        assert alert.current_login.timestamp == T0 + timedelta(hours=1)
        assert alert.alert_id.startswith("alert")

    def test_single_login(self):
        assert ImpossibleTravelDetector().analyze_login_sequence("user-1", [login(BOSTON, T0)]) == []

    def test_layer_result(self):
        detector = ImpossibleTravelDetector()
        layer = detector.analyze(
            login(NEW_YORK, T0, city="New York"), login(LONDON, T0 + timedelta(hours=1), city="London"),
        )
        assert layer.layer == LayerName.ATO
        signal = layer.signals[0]
        assert signal.type == ATOSignalType.IMPOSSIBLE_TRAVEL
        assert signal.severity == Severity.CRITICAL
        assert signal.detail.startswith("New York to London")

    def test_layer_missing_geo(self):
        detector = ImpossibleTravelDetector()
        previous = LoginLocation(user_id="user-1", timestamp=T0)
        layer = detector.analyze(previous, login(LONDON, T0 + timedelta(hours=1)))
        assert layer.score == 0
        assert layer.confidence == 0.0
        assert layer.signals[0].type == ATOSignalType.MISSING_GEO_DATA
