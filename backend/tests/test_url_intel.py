"""
MailShield URL Intelligence Tests

Tests for URL classification, lookalike domains, obfuscation, redirect
chains and domain age.
"""

import base64
import random
from datetime import datetime, timedelta, timezone

import pytest

from mailshield.models.signals import (
    ImpersonationSignalType,
    LayerName,
    Severity,
    Signal,
    DeterministicSignalType,
    URLSignalType,
)
from mailshield.models.url import (
    DomainAgeInfo,
    DomainAgeRisk,
    RedirectHop,
    TrustLevel,
    URLType,
    URLVerdict,
    WhoisData,
)
from mailshield.services.url_intel.classifier import (
    classify_url,
    classify_urls,
    get_url_score_multiplier,
)
from mailshield.services.url_intel.domain_age import (
    DomainAgeCorrelator,
    analyze_domain_age,
    analyze_registration_timing,
    calculate_compound_domain_risk,
    get_domain_age_risk_level,
)
from mailshield.services.url_intel.lookalike import detect_lookalike_domain
from mailshield.services.url_intel.obfuscation import detect_url_obfuscation
from mailshield.services.url_intel.redirects import (
    analyze_redirect_chain,
    detect_cloaking,
    redirect_signals,
)
from mailshield.utils.constants import PROTECTED_BRANDS, UNICODE_HOMOGLYPHS


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days):
    return NOW - timedelta(days=days)


def homoglyph_variant(rng):
    """Swap one letter of a random protected brand for a confusable glyph."""
    target = rng.choice(sorted(PROTECTED_BRANDS))
    base, _, tld = target.partition(".")
    positions = [i for i, ch in enumerate(base) if ch in UNICODE_HOMOGLYPHS]
    i = rng.choice(positions)
    glyph = rng.choice(UNICODE_HOMOGLYPHS[base[i]])
    return f"{base[:i]}{glyph}{base[i + 1:]}.{tld}", target


class TestURLClassifier:
    """Tests for context-aware URL classification."""

    def test_known_tracking_domain(self):
        result = classify_url(
            "https://links.newsletter.example/c/123",
            known_tracking_domains=["newsletter.example"],
        )
        assert result.type == URLType.TRACKING
        assert result.trust_level == TrustLevel.HIGH
        assert get_url_score_multiplier(result) == 0.0

    def test_platform_tracking_pattern(self):
        result = classify_url("https://www.quora.com/qemail/tc?al_imp=abc")
        assert result.type == URLType.TRACKING
        assert result.trust_level == TrustLevel.MEDIUM
        assert get_url_score_multiplier(result) == 0.2

    def test_javascript_scheme(self):
        result = classify_url("javascript:alert(1)")
        assert result.type == URLType.MALICIOUS
        assert result.score == 10

    def test_punycode(self):
        result = classify_url("https://xn--pypal-4ve.com/login")
        assert result.type == URLType.MALICIOUS
        assert result.score == 8

    def test_typosquat_but_not_the_real_brand(self):
        assert classify_url("https://g00gle.com/").type == URLType.MALICIOUS
        assert classify_url("https://www.google.com/search?q=x").type == URLType.SAFE

    def test_sender_domain_match(self):
        result = classify_url("https://shop.example.com/order", sender_domain="example.com")
        assert result.type == URLType.SAFE
        assert result.trust_level == TrustLevel.HIGH
        assert result.score == 0

    def test_shortener_and_redirect(self):
        assert classify_url("https://bit.ly/xyz").type == URLType.SHORTENER
        redirect = classify_url("https://r.example.net/out?url=https://elsewhere.example/")
        assert redirect.type == URLType.REDIRECT
        assert redirect.score == 3
        assert get_url_score_multiplier(redirect) == 0.8

    def test_default_is_safe_medium(self):
        result = classify_url("https://docs.example.org/page")
        assert result.type == URLType.SAFE
        assert result.trust_level == TrustLevel.MEDIUM
        assert result.score == 1

    @pytest.mark.parametrize("url", ["not a url", "://missing-scheme", "http://"])
    def test_invalid_url(self, url):
        result = classify_url(url)
        assert result.trust_level == TrustLevel.LOW
        assert result.score == 5
        assert result.metadata["parse_error"] is True

    def test_summary(self):
        summary = classify_urls([
            "https://bit.ly/a",
            "http://10.0.0.1/x",
            "https://www.quora.com/qemail/tc?id=1",
        ])
        assert summary.total == 3
        assert summary.by_type["shortener"] == 1
        assert summary.by_type["malicious"] == 1
        assert summary.max_score == 6
        assert summary.suspicious_count == 1


class TestLookalikeDomains:
    """Tests for lookalike domain detection."""

    def test_cyrillic_homoglyph(self):
        # first "a" is Cyrillic U+0430
        result = detect_lookalike_domain("pаypal.com")
        assert result.is_lookalike
        assert result.technique == "homoglyph"
        assert result.target_domain == "paypal.com"
        assert result.risk_score == 9

    def test_punycode_homoglyph(self):
        domain = "pаypal.com".encode("idna").decode("ascii")
        result = detect_lookalike_domain(domain)
        assert result.is_lookalike
        assert result.technique == "homoglyph"

    def test_ascii_substitution(self):
        result = detect_lookalike_domain("paypa1.com")
        assert result.technique == "character_substitution"
        assert result.risk_score == 8

    def test_hyphen_insertion(self):
        result = detect_lookalike_domain("pay-pal.com")
        assert result.technique == "hyphen_insertion"

    def test_character_addition(self):
        result = detect_lookalike_domain("paypall.com")
        assert result.technique == "character_addition"
        assert result.risk_score == 7

    def test_tld_substitution_on_high_risk_tld(self):
        result = detect_lookalike_domain("paypal.xyz")
        assert result.technique == "tld_substitution"
        assert "high_risk_tld" in result.signals

    def test_subdomain_impersonation(self):
        result = detect_lookalike_domain("paypal.com.secure-login.tk")
        assert result.technique == "subdomain_impersonation"
        assert result.target_domain == "paypal.com"

    def test_brand_keyword(self):
        result = detect_lookalike_domain("secure-amazon-verify.com")
        assert result.technique == "brand_keyword"
        assert result.target_domain == "amazon.com"

    @pytest.mark.parametrize("domain", [
        "paypal.com",
        "www.paypal.com",
        "login.microsoft.com",
        "google.de",
        "example.org",
    ])
    def test_legitimate_domains(self, domain):
        assert not detect_lookalike_domain(domain).is_lookalike

    def test_custom_targets(self):
        result = detect_lookalike_domain("acme-corp.com", targets=["acmecorp.com"])
        assert result.is_lookalike
        assert result.target_domain == "acmecorp.com"
        assert not detect_lookalike_domain("acmecorp.com", targets=["acmecorp.com"]).is_lookalike


class TestHomoglyphProperties:
    """Randomized single-glyph swaps over the protected brands."""

    @pytest.mark.parametrize("seed", range(40))
    def test_single_glyph_swap_detected(self, seed):
        domain, target = homoglyph_variant(random.Random(seed))
        result = detect_lookalike_domain(domain)
        assert result.is_lookalike, domain
        assert result.technique == "homoglyph"
        assert result.target_domain == target

    @pytest.mark.parametrize("seed", range(10))
    def test_swap_against_custom_target(self, seed):
        domain, target = homoglyph_variant(random.Random(seed))
        result = detect_lookalike_domain(domain, targets=[target])
        assert result.is_lookalike
        assert result.technique == "homoglyph"

    @pytest.mark.parametrize("target", sorted(PROTECTED_BRANDS))
    def test_target_itself_is_not_lookalike(self, target):
        assert not detect_lookalike_domain(target).is_lookalike
        assert not detect_lookalike_domain(target, targets=[target]).is_lookalike

    def test_every_glyph_is_lowercase(self):
        for glyphs in UNICODE_HOMOGLYPHS.values():
            for glyph in glyphs:
                assert glyph.lower() == glyph


class TestURLObfuscation:
    """Tests for URL obfuscation detection."""

    def test_credential_prefix_with_brand(self):
        result = detect_url_obfuscation("https://paypal.com@evil.example/login")
        assert result.technique == "credential_prefix"
        assert result.risk_score == 10
        assert result.decoded_url == "https://evil.example/"
        assert "brand_in_credential_prefix" in result.signals

    def test_credential_prefix_plain(self):
        result = detect_url_obfuscation("https://user@evil.example/")
        assert result.risk_score == 9

    def test_decimal_ip(self):
        result = detect_url_obfuscation("http://3232235777/login")
        assert result.technique == "decimal_ip"
        assert result.decoded_url == "http://192.168.1.1/login"

    def test_hex_ip(self):
        assert detect_url_obfuscation("http://0xC0A80101/").technique == "hex_ip"

    def test_double_encoding(self):
        result = detect_url_obfuscation("https://example.com/%252e%252e/admin")
        assert result.technique == "double_encoding"
        assert result.risk_score == 8

    def test_encoded_path_separators(self):
        result = detect_url_obfuscation("https://example.com/a%2fb%2e%2e")
        assert result.technique == "percent_encoding"

    def test_base64_payload(self):
        payload = base64.b64encode(b"https://evil.example/x").decode("ascii")
        result = detect_url_obfuscation(f"https://r.example/go?url={payload}")
        assert result.technique == "base64_payload"
        assert result.decoded_url == "https://evil.example/x"

    def test_shortener_chain(self):
        result = detect_url_obfuscation("https://bit.ly/abc?next=https%3A%2F%2Ftinyurl.com%2Fxyz")
        assert result.technique == "shortener_chain"

    def test_long_url_not_obfuscated(self):
        result = detect_url_obfuscation("https://example.com/" + "a" * 1600)
        assert result.risk_score == 3
        assert not result.is_obfuscated
        assert result.technique is None

    @pytest.mark.parametrize("url", [
        "https://www.google.com/search?q=hello%20world",
        "https://example.com/search?q=hello+world&page=2",
        "https://example.com/path/to/page",
    ])
    def test_ordinary_urls(self, url):
        result = detect_url_obfuscation(url)
        assert not result.is_obfuscated
        assert result.risk_score == 0


class TestRedirectChains:
    """Tests for redirect chain analysis and cloaking."""

    def test_protocol_downgrade(self):
        analysis = analyze_redirect_chain([
            RedirectHop(url="https://start.example/a", status_code=302),
            RedirectHop(url="http://land.example/b"),
        ])
        assert analysis.has_protocol_downgrade
        signals = redirect_signals(analysis)
        downgrade = [s for s in signals if s.type == URLSignalType.PROTOCOL_DOWNGRADE]
        assert downgrade[0].score == 25

    def test_upgrade_is_not_downgrade(self):
        analysis = analyze_redirect_chain([
            RedirectHop(url="http://start.example/a", status_code=301),
            RedirectHop(url="https://start.example/a"),
        ])
        assert not analysis.has_protocol_downgrade
        assert analysis.risk_score == 0

    def test_reputation_decline_from_first_hop(self):
        analysis = analyze_redirect_chain([
            RedirectHop(url="https://a.example/", reputation=90),
            RedirectHop(url="https://b.example/", reputation=80),
            RedirectHop(url="https://c.example/", reputation=50),
        ])
        assert analysis.reputation_decline
        assert analysis.reputation_drop_percent == 44
        assert analysis.min_reputation == 50

    def test_small_reputation_drop(self):
        analysis = analyze_redirect_chain([
            RedirectHop(url="https://a.example/", reputation=90),
            RedirectHop(url="https://b.example/", reputation=70),
        ])
        assert not analysis.reputation_decline

    def test_suspicious_tld_and_ip(self):
        analysis = analyze_redirect_chain([
            RedirectHop(url="https://bit.ly/x", status_code=301),
            RedirectHop(url="https://evil.tk/y", status_code=302),
            RedirectHop(url="http://203.0.113.9/z"),
        ])
        assert analysis.has_suspicious_tld_change
        assert analysis.ends_at_ip_address
        types = {s.type for s in redirect_signals(analysis)}
        assert URLSignalType.SUSPICIOUS_TLD_REDIRECT in types
        assert URLSignalType.REDIRECT_TO_IP in types

    def test_brand_to_suspicious_tld(self):
        analysis = analyze_redirect_chain([
            RedirectHop(url="https://www.google.com/url?q=x", status_code=302),
            RedirectHop(url="https://landing.xyz/"),
        ])
        assert "brand_to_suspicious_tld" in analysis.signals

    def test_excessive_hops_capped(self):
        hops = [RedirectHop(url=f"https://hop{i}.example{i}.net/") for i in range(7)]
        analysis = analyze_redirect_chain(hops)
        assert "excessive_redirects" in analysis.signals
        assert "rapid_domain_hopping" in analysis.signals
        assert analysis.risk_score == 10
        chain = redirect_signals(analysis)[0]
        assert chain.type == URLSignalType.REDIRECT_CHAIN_RISK
        assert chain.score == 40
        assert chain.severity == Severity.CRITICAL

    def test_empty_chain(self):
        analysis = analyze_redirect_chain([])
        assert analysis.hop_count == 0
        assert redirect_signals(analysis) == []

    def test_user_agent_cloaking(self):
        hops = [
            RedirectHop(url="https://link.example/a", user_agent="Googlebot/2.1"),
            RedirectHop(url="https://benign.example/", user_agent="Googlebot/2.1"),
            RedirectHop(url="https://link.example/a", user_agent="Mozilla/5.0"),
            RedirectHop(url="https://phish.example/login", user_agent="Mozilla/5.0"),
        ]
        cloaking = detect_cloaking(hops)
        assert cloaking.is_cloaking
        assert cloaking.technique == "user_agent_based"

        signals = redirect_signals(analyze_redirect_chain(hops), cloaking)
        cloak = [s for s in signals if s.type == URLSignalType.CLOAKING_REDIRECT]
        assert cloak[0].score == 30

    def test_same_destination_is_not_cloaking(self):
        hops = [
            RedirectHop(url="https://same.example/", user_agent="Mozilla/5.0"),
            RedirectHop(url="https://same.example/", user_agent="curl/8.0"),
        ]
        assert not detect_cloaking(hops).is_cloaking


class TestDomainAge:
    """Tests for standalone domain age scoring."""

    def test_new_domain(self):
        result = analyze_domain_age("fresh.example", WhoisData(created_date=days_ago(10)), now=NOW)
        assert result.is_new_domain
        assert result.age_days == 10
        assert result.risk_score == 7

    def test_privacy_and_reputable_registrar(self):
        result = analyze_domain_age(
            "fresh.example",
            WhoisData(created_date=days_ago(10), privacy_protected=True, registrar="MarkMonitor Inc."),
            now=NOW,
        )
        assert result.risk_score == 6
        assert "reputable_registrar" in result.signals

    def test_moderately_new(self):
        result = analyze_domain_age("shop.example", WhoisData(created_date=days_ago(120)), now=NOW)
        assert not result.is_new_domain
        assert result.risk_score == 2

    def test_unknown_whois(self):
        result = analyze_domain_age("mystery.example", None)
        assert result.age_days == -1
        assert result.risk_score == 3
        assert result.signals == ["unknown_whois_data"]

    def test_naive_dates_are_utc(self):
        naive = WhoisData(created_date=days_ago(40).replace(tzinfo=None))
        assert analyze_domain_age("x.example", naive, now=NOW).age_days == 40

    @pytest.mark.parametrize("age, level", [
        (0, DomainAgeRisk.CRITICAL),
        (7, DomainAgeRisk.CRITICAL),
        (8, DomainAgeRisk.HIGH),
        (30, DomainAgeRisk.HIGH),
        (31, DomainAgeRisk.MODERATE),
        (90, DomainAgeRisk.MODERATE),
        (365, DomainAgeRisk.LOW),
        (366, DomainAgeRisk.SAFE),
        (None, DomainAgeRisk.MODERATE),
    ])
    def test_risk_bands(self, age, level):
        assert get_domain_age_risk_level(age) == level


def bec_signal(score=25):
    return Signal(
        type=ImpersonationSignalType.VIP_DISPLAY_NAME_SPOOF,
        severity=Severity.WARNING,
        score=score,
        detail="Display name matches the CEO",
    )


class TestDomainAgeCorrelation:
    """Tests for amplifying existing signals by domain age."""

    def test_young_domain_amplifies_bec(self):
        result = DomainAgeCorrelator().correlate(
            [bec_signal()],
            DomainAgeInfo(domain="acme-payments.example", age_days=5),
        )
        assert result.amplification_applied
        assert result.amplification_multiplier == 2.0
        amplified = result.correlated_signals[0]
        assert amplified.score == 50
        assert amplified.metadata["original_score"] == 25

        extra = [s for s in result.correlated_signals
                 if s.type == URLSignalType.DOMAIN_AGE_BEC_CORRELATION]
        assert extra[0].severity == Severity.CRITICAL
        assert extra[0].score == 50

    def test_established_domain_not_amplified(self):
        signals = [bec_signal()]
        result = DomainAgeCorrelator().correlate(
            signals, DomainAgeInfo(domain="old.example", age_days=4000),
        )
        assert not result.amplification_applied
        assert result.correlated_signals == signals

    def test_reliability_scales_multiplier(self):
        result = DomainAgeCorrelator().correlate(
            [bec_signal()],
            DomainAgeInfo(domain="x.example", age_days=5, reliability=0.5),
        )
        assert result.amplification_multiplier == 1.5

    def test_lookalike_floor_and_credential_correlation(self):
        credential = Signal(
            type=DeterministicSignalType.CREDENTIAL_REQUEST,
            severity=Severity.CRITICAL,
            score=40,
            detail="password requested",
        )
        result = DomainAgeCorrelator().correlate(
            [credential],
            DomainAgeInfo(domain="paypa1.com", age_days=4000, lookalike_target="paypal.com"),
        )
        assert result.amplification_multiplier == 1.5
        types = [s.type for s in result.correlated_signals]
        assert URLSignalType.DOMAIN_AGE_LOOKALIKE_CORRELATION in types

    def test_only_amplifiable_types_change(self):
        tracking = Signal(type=URLSignalType.TRACKING_URL, severity=Severity.INFO, score=5, detail="t")
        result = DomainAgeCorrelator().correlate(
            [tracking], DomainAgeInfo(domain="x.example", age_days=2),
        )
        assert not result.amplification_applied
        assert result.correlated_signals == [tracking]

    def test_new_domain_in_links_from_free_mail(self):
        free = Signal(type=DeterministicSignalType.FREE_EMAIL_PROVIDER, severity=Severity.INFO,
                      score=5, detail="gmail")
        result = DomainAgeCorrelator().correlate(
            [free, bec_signal()],
            DomainAgeInfo(domain="x.example", age_days=10, in_email_links=True),
        )
        types = [s.type for s in result.correlated_signals]
        assert URLSignalType.NEW_DOMAIN_IN_LINKS in types

    def test_compound_new_vendor_fraud(self):
        financial = Signal(type=DeterministicSignalType.FINANCIAL_REQUEST, severity=Severity.CRITICAL,
                           score=35, detail="wire transfer")
        result = calculate_compound_domain_risk([financial], 5, first_contact=True)
        assert result.is_compound_threat
        assert result.risk_multiplier == 2.5
        assert result.signals[0].score == 40

        assert calculate_compound_domain_risk([financial], 20, True).risk_multiplier == 2.0
        assert calculate_compound_domain_risk([], 20, True).risk_multiplier == 1.5
        assert not calculate_compound_domain_risk([financial], 5, first_contact=False).is_compound_threat
        assert not calculate_compound_domain_risk([financial], 400, True).is_compound_threat

    def test_registration_timing(self):
        recent = analyze_registration_timing("new.example", days_ago(3), now=NOW)
        assert recent.is_suspicious
        assert recent.risk_score == 9
        assert recent.suspicion_reason == "very_recent_registration"

        targeted = analyze_registration_timing(
            "acme-payments.com", days_ago(400), target_organization="acme.com", now=NOW,
        )
        assert targeted.is_suspicious
        assert targeted.risk_score == 8
        assert targeted.suspicion_reason == "targeted_domain_name"


class TestURLIntelligence:
    """Tests for the combined per-URL score and the layer."""

    def test_brand_credential_prefix_is_malicious(self):
        from mailshield.services.url_intel.analyzer import get_url_intelligence

        result = get_url_intelligence("https://paypal.com@evil.example/login")
        assert result.overall_risk_score == 10.0
        assert result.verdict == URLVerdict.MALICIOUS

    def test_parse_error(self):
        from mailshield.services.url_intel.analyzer import get_url_intelligence, intelligence_to_signals

        result = get_url_intelligence("not a url")
        assert result.parse_error
        assert result.verdict == URLVerdict.SUSPICIOUS
        assert result.overall_risk_score == 5.0
        signals = intelligence_to_signals(result)
        assert signals[0].type == URLSignalType.URL_PARSE_ERROR
        assert signals[0].score == 10

    def test_clean_url(self):
        from mailshield.services.url_intel.analyzer import get_url_intelligence

        result = get_url_intelligence("https://docs.example.org/guide")
        assert result.overall_risk_score == 0.0
        assert result.verdict == URLVerdict.SAFE

    def test_layer(self):
        from mailshield.services.url_intel.analyzer import URLIntelligenceAnalyzer

        layer = URLIntelligenceAnalyzer().analyze(
            ["https://paypa1.com/login", "https://shop.fresh-deals.example/cart"],
            whois={"fresh-deals.example": WhoisData(created_date=days_ago(5))},
            now=NOW,
        )
        assert layer.layer == LayerName.URL_INTELLIGENCE
        assert layer.confidence == 0.75
        types = {s.type for s in layer.signals}
        assert URLSignalType.LOOKALIKE_DOMAIN in types
        assert URLSignalType.NEW_DOMAIN in types
        assert layer.metadata["url_verdicts"]["https://paypa1.com/login"] == "suspicious"

    def test_layer_with_redirect_chain(self):
        from mailshield.services.url_intel.analyzer import URLIntelligenceAnalyzer

        url = "https://start.example/a"
        layer = URLIntelligenceAnalyzer().analyze(
            [url],
            redirect_chains={url: [
                RedirectHop(url=url, status_code=302),
                RedirectHop(url="http://land.example/b"),
            ]},
        )
        downgrade = [s for s in layer.signals if s.type == URLSignalType.PROTOCOL_DOWNGRADE]
        assert downgrade[0].metadata["url"] == url
