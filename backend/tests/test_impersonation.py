"""
MailShield Impersonation Tests

Tests for VIP directory matching and executive impersonation detection.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from mailshield.models.impersonation import VIP, ImpersonationIndicator, RiskLevel, VIPRole
from mailshield.models.signals import ImpersonationSignalType, LayerName, Severity
from mailshield.services.bec import (
    ImpersonationDetector,
    InMemoryVIPDirectory,
    calculate_impersonation_risk,
    check_cousin_domain,
    detect_potential_vip,
)
from mailshield.services.bec.impersonation import find_executive_title, find_script_spoof
from mailshield.services.bec.vip import fuzzy_name_match, normalize_display_name


TENANT = "tenant-1"


def create_directory():
    return InMemoryVIPDirectory([
        VIP(
            tenant_id=TENANT,
            email="jane.smith@acme.com",
            display_name="Jane Smith",
            title="Chief Executive Officer",
            role=VIPRole.EXECUTIVE,
            aliases=["ceo@acme.com"],
        ),
        VIP(
            tenant_id=TENANT,
            email="raj.patel@acme.com",
            display_name="Raj Patel",
            title="Controller",
            role=VIPRole.FINANCE,
        ),
    ])


def indicator_types(result):
    return [i.type for i in result.indicators]


class TestVIPDirectory:
    """Tests for the in-memory VIP directory."""

    def test_find_by_email_and_alias(self):
        async def run():
            directory = create_directory()
            assert (await directory.find_by_email(TENANT, "Jane.Smith@acme.com")).display_name == "Jane Smith"
            assert (await directory.find_by_email(TENANT, "ceo@acme.com")).display_name == "Jane Smith"
            assert await directory.find_by_email("other-tenant", "jane.smith@acme.com") is None

        asyncio.run(run())

    def test_fuzzy_display_name(self):
        async def run():
            directory = create_directory()
            matches = await directory.find_by_display_name(TENANT, "jane smith (CEO)")
            assert [v.email for v in matches] == ["jane.smith@acme.com"]
            assert await directory.find_by_display_name(TENANT, "Bob Jones") == []

        asyncio.run(run())

    def test_name_helpers(self):
        assert normalize_display_name("  Jane   SMITH, Jr. ") == "jane smith jr"
        assert fuzzy_name_match("jane smith", "jane a smith")
        assert not fuzzy_name_match("jane smith", "")

    def test_vip_using_own_address(self):
        async def run():
            check = await create_directory().check_impersonation(TENANT, "jane.smith@acme.com", "Jane Smith")
            assert not check.is_impersonation

        asyncio.run(run())

    def test_display_name_spoof_confidence(self):
        async def run():
            check = await create_directory().check_impersonation(
                TENANT, "jane.smith@external.example", "Jane Smith",
            )
            assert check.is_impersonation
            # base 0.5 + executive 0.1 + other domain 0.2 + exact name 0.15
            assert check.confidence == pytest.approx(0.95)
            assert check.matched_vip.email == "jane.smith@acme.com"

        asyncio.run(run())

    def test_bulk_import(self):
        directory = InMemoryVIPDirectory()
        imported = directory.bulk_import(TENANT, [
            {"email": "CFO@Acme.com", "display_name": "Ann Lee", "title": "CFO"},
            {"email": "ap@acme.com", "display_name": "Tom Reed", "title": "Accounts Payable"},
            {"email": "", "display_name": "Nobody"},
        ])
        assert imported == 2
        roles = {v.email: v.role for v in directory.list(TENANT)}
        assert roles == {"cfo@acme.com": VIPRole.EXECUTIVE, "ap@acme.com": VIPRole.FINANCE}
        assert all(v.id.startswith("vip_") for v in directory.list(TENANT))

    def test_remove(self):
        directory = create_directory()
        vip = directory.list(TENANT)[0]
        assert directory.remove(TENANT, vip.id)
        assert not directory.remove(TENANT, vip.id)

    def test_detect_potential_vip(self):
        assert detect_potential_vip("Raj Patel", "Controller") == (True, VIPRole.FINANCE, "controller")
        assert detect_potential_vip("Raj Patel")[0] is False


class TestImpersonationChecks:
    """Tests for the individual impersonation checks."""

    def test_vip_display_name_spoof(self):
        async def run():
            detector = ImpersonationDetector(create_directory())
            result = await detector.detect(TENANT, "jane.smith@external.example", "Jane Smith")
            assert result.is_impersonation
            assert result.impersonation_type == ImpersonationSignalType.VIP_DISPLAY_NAME_SPOOF
            assert result.matched_vip.display_name == "Jane Smith"
            assert result.risk_level == RiskLevel.CRITICAL
            assert result.risk_score == 0.5

        asyncio.run(run())

    def test_vip_name_from_free_email(self):
        async def run():
            detector = ImpersonationDetector(create_directory())
            result = await detector.detect(TENANT, "janesmith.office@gmail.com", "Jane Smith")
            assert indicator_types(result) == [
                ImpersonationSignalType.VIP_DISPLAY_NAME_SPOOF,
                ImpersonationSignalType.FREE_EMAIL_EXECUTIVE,
            ]
            assert result.risk_score == 1.0
            assert result.explanation.startswith("Multiple impersonation indicators")

        asyncio.run(run())

    def test_executive_title(self):
        async def run():
            result = await ImpersonationDetector().detect(TENANT, "john@partner.example", "John Doe, CEO")
            assert indicator_types(result) == [ImpersonationSignalType.TITLE_SPOOF]
            assert result.confidence == 0.6
            assert result.is_impersonation
            assert result.risk_level == RiskLevel.MEDIUM

        asyncio.run(run())

    def test_executive_title_from_free_email(self):
        async def run():
            result = await ImpersonationDetector().detect(TENANT, "ceo.john@gmail.com", "CFO John Doe")
            assert ImpersonationSignalType.FREE_EMAIL_EXECUTIVE in indicator_types(result)
            assert result.confidence == 0.75
            assert result.risk_level == RiskLevel.CRITICAL

        asyncio.run(run())

    def test_reply_to_free_mail(self):
        async def run():
            result = await ImpersonationDetector().detect(
                TENANT, "billing@vendor.example", "Billing", reply_to="billing.vendor@gmail.com",
            )
            indicator = result.indicators[0]
            assert indicator.type == ImpersonationSignalType.REPLY_TO_MISMATCH
            assert indicator.level == RiskLevel.HIGH

        asyncio.run(run())

    def test_reply_to_other_domain_alone_is_not_impersonation(self):
        async def run():
            result = await ImpersonationDetector().detect(
                TENANT, "billing@vendor.example", "Billing", reply_to="ar@vendor-payments.example",
            )
            assert result.indicators[0].level == RiskLevel.MEDIUM
            assert result.confidence == 0.5
            assert not result.is_impersonation

        asyncio.run(run())

    def test_same_domain_reply_to(self):
        async def run():
            result = await ImpersonationDetector().detect(
                TENANT, "billing@vendor.example", "Billing", reply_to="support@vendor.example",
            )
            assert result.indicators == []
            assert result.explanation == "No impersonation indicators detected"

        asyncio.run(run())

    def test_cousin_domain(self):
        async def run():
            result = await ImpersonationDetector().detect(
                TENANT, "accounts@acmme.com", "Accounts", organization_domain="acme.com",
            )
            assert indicator_types(result) == [ImpersonationSignalType.COUSIN_DOMAIN]
            assert result.confidence == 0.9
            assert result.is_impersonation

        asyncio.run(run())

    def test_unicode_display_name(self):
        async def run():
            # Cyrillic "а" in place of Latin "a"
            result = await ImpersonationDetector().detect(TENANT, "jane@partner.example", "Jаne Smith")
            assert indicator_types(result) == [ImpersonationSignalType.UNICODE_SPOOF]
            assert result.risk_level == RiskLevel.CRITICAL

        asyncio.run(run())

    def test_unicode_sender_domain(self):
        async def run():
            result = await ImpersonationDetector().detect(TENANT, "jane@аcme.com", "Jane")
            assert result.indicators[0].detail.startswith("Non-ASCII characters in sender domain")

        asyncio.run(run())

    def test_clean_sender(self):
        async def run():
            detector = ImpersonationDetector(create_directory())
            result = await detector.detect(
                TENANT, "jane.smith@acme.com", "Jane Smith", organization_domain="acme.com",
            )
            assert not result.is_impersonation
            assert result.risk_score == 0.0

        asyncio.run(run())

    def test_failing_directory(self):
        async def run():
            directory = AsyncMock()
            directory.check_impersonation.side_effect = RuntimeError("directory offline")
            detector = ImpersonationDetector(directory)
            result = await detector.detect(TENANT, "john@partner.example", "John Doe, CEO")
            assert indicator_types(result) == [
                ImpersonationSignalType.VIP_LOOKUP_FAILED,
                ImpersonationSignalType.TITLE_SPOOF,
            ]
            assert result.impersonation_type == ImpersonationSignalType.TITLE_SPOOF
            assert result.risk_score == 0.35

        asyncio.run(run())

    def test_analyze_layer(self):
        async def run():
            detector = ImpersonationDetector(create_directory())
            layer = await detector.analyze(TENANT, "janesmith.office@gmail.com", "Jane Smith")
            assert layer.layer == LayerName.IMPERSONATION
            assert layer.score == 100
            assert layer.metadata["matched_vip"] == "jane.smith@acme.com"
            assert all(s.severity == Severity.CRITICAL and s.score == 40 for s in layer.signals)

        asyncio.run(run())


class TestImpersonationHelpers:
    """Tests for domain, title and risk helpers."""

    @pytest.mark.parametrize("sender, confidence", [
        ("acme.co", 0.85),
        ("acmme.com", 0.9),
        ("acmeee.com", 0.7),
    ])
    def test_cousin_domains(self, sender, confidence):
        is_cousin, score, _ = check_cousin_domain(sender, "acme.com")
        assert is_cousin
        assert score == confidence

    @pytest.mark.parametrize("sender", ["acme.com", "mail.acme.com", "example.org"])
    def test_not_cousin(self, sender):
        assert check_cousin_domain(sender, "acme.com")[0] is False

    def test_executive_title(self):
        assert find_executive_title("Mary Jones - Vice President") is not None
        assert find_executive_title("Victor Mendez") is None

    def test_latin_accents_are_not_spoofing(self):
        assert find_script_spoof("Jäger") is None

    @pytest.mark.parametrize("levels, score, level", [
        ([], 0.0, RiskLevel.LOW),
        ([RiskLevel.LOW], 0.1, RiskLevel.LOW),
        ([RiskLevel.MEDIUM], 0.2, RiskLevel.LOW),
        ([RiskLevel.HIGH], 0.35, RiskLevel.MEDIUM),
        ([RiskLevel.HIGH, RiskLevel.MEDIUM], 0.55, RiskLevel.HIGH),
        ([RiskLevel.HIGH, RiskLevel.HIGH, RiskLevel.HIGH], 1.0, RiskLevel.CRITICAL),
        ([RiskLevel.CRITICAL], 0.5, RiskLevel.CRITICAL),
    ])
    def test_risk(self, levels, score, level):
        indicators = [
            ImpersonationIndicator(type=ImpersonationSignalType.TITLE_SPOOF, level=lvl, detail="x")
            for lvl in levels
        ]
        assert calculate_impersonation_risk(indicators) == (score, level)
