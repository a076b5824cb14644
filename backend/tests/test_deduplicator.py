"""
MailShield Signal Deduplication Tests
"""

import random

import pytest

from mailshield.models.signals import (
    DeterministicSignalType,
    Severity,
    Signal,
    ThreatIntelSignalType,
    URLSignalType,
)
from mailshield.services.detection.deduplicator import (
    calculate_deduplication_impact,
    deduplicate_signals,
    group_signals_by_category,
)


def tracking_signal(url, score=5):
    return Signal(
        type=URLSignalType.TRACKING_URL,
        severity=Severity.INFO,
        score=score,
        detail=f"Tracking URL: {url}",
        metadata={"url": url},
    )


def spf_pass():
    return Signal(type=DeterministicSignalType.SPF, severity=Severity.INFO, score=0, detail="SPF passed")


class TestDeduplicateSignals:
    """Tests for collapsing duplicate signals."""

    def test_newsletter_tracking_links(self):
        """Six tracking links from one newsletter count once."""
        signals = [tracking_signal(f"https://www.quora.com/qemail/tc?id={i}") for i in range(6)]
        signals.append(spf_pass())
        assert sum(s.score for s in signals) == 30

        result = deduplicate_signals(signals)

        assert len(result) == 2
        assert sum(s.score for s in result) == 5
        tracking = result[0]
        assert tracking.metadata["duplicate_count"] == 6
        assert tracking.metadata["total_urls"] == 6
        assert len(tracking.metadata["urls"]) == 6
        assert not tracking.metadata["has_more"]
        assert tracking.detail.endswith("(×6 URLs)")

    def test_url_sample_is_capped(self):
        signals = [tracking_signal(f"https://t.example/{i}") for i in range(14)]
        merged = deduplicate_signals(signals)[0]
        assert len(merged.metadata["urls"]) == 10
        assert merged.metadata["has_more"]
        assert merged.metadata["total_urls"] == 14

    def test_keeps_highest_score(self):
        signals = [tracking_signal("https://a.example/", 3), tracking_signal("https://b.example/", 9)]
        merged = deduplicate_signals(signals)
        assert [s.score for s in merged] == [9]

    def test_non_url_grouped_by_severity(self):
        signals = [
            Signal(type=DeterministicSignalType.SPF, severity=Severity.WARNING, score=20, detail="fail"),
            Signal(type=DeterministicSignalType.SPF, severity=Severity.WARNING, score=10, detail="softfail"),
            Signal(type=DeterministicSignalType.SPF, severity=Severity.INFO, score=0, detail="pass"),
        ]
        result = deduplicate_signals(signals)
        assert len(result) == 2
        assert result[0].detail == "fail (×2)"
        assert result[0].metadata["duplicate_count"] == 2
        assert "urls" not in result[0].metadata
        assert result[1].detail == "pass"

    def test_singletons_untouched(self):
        signals = [spf_pass(), tracking_signal("https://a.example/")]
        assert deduplicate_signals(signals) == signals

    def test_max_per_group(self):
        signals = [tracking_signal(f"https://a.example/{i}", i) for i in range(5)]
        result = deduplicate_signals(signals, max_per_group=2)
        assert [s.score for s in result] == [4, 3]
        assert all(s.metadata["duplicate_count"] == 5 for s in result)

    def test_invalid_max_per_group(self):
        with pytest.raises(ValueError):
            deduplicate_signals([], max_per_group=0)

    def test_inputs_not_mutated(self):
        signals = [tracking_signal("https://a.example/"), tracking_signal("https://b.example/")]
        deduplicate_signals(signals)
        assert all("duplicate_count" not in s.metadata for s in signals)


SIGNAL_POOL = [
    (URLSignalType.TRACKING_URL, Severity.INFO),
    (URLSignalType.SHORTENED_URL, Severity.INFO),
    (URLSignalType.MALICIOUS_URL, Severity.CRITICAL),
    (DeterministicSignalType.SPF, Severity.WARNING),
    (DeterministicSignalType.SPF, Severity.INFO),
    (DeterministicSignalType.URGENCY_LANGUAGE, Severity.WARNING),
    (ThreatIntelSignalType.FEED_ERROR, Severity.INFO),
]


def random_signals(rng):
    signals = []
    for i in range(rng.randint(0, 25)):
        signal_type, severity = rng.choice(SIGNAL_POOL)
        signals.append(Signal(
            type=signal_type,
            severity=severity,
            score=rng.randint(0, 40),
            detail=f"signal {i}",
            metadata={"url": f"https://host{rng.randint(0, 5)}.example/{i}"},
        ))
    return signals


class TestDeduplicationProperties:
    """Randomized checks over mixed signal lists."""

    @pytest.mark.parametrize("seed", range(20))
    def test_idempotent(self, seed):
        signals = random_signals(random.Random(seed))
        once = deduplicate_signals(signals)
        assert deduplicate_signals(once) == once

    @pytest.mark.parametrize("seed", range(20))
    @pytest.mark.parametrize("max_per_group", [1, 2, 3])
    def test_idempotent_with_larger_groups(self, seed, max_per_group):
        signals = random_signals(random.Random(seed))
        once = deduplicate_signals(signals, max_per_group)
        assert deduplicate_signals(once, max_per_group) == once

    @pytest.mark.parametrize("seed", range(20))
    def test_never_increases_score(self, seed):
        signals = random_signals(random.Random(seed))
        result = deduplicate_signals(signals)
        assert len(result) <= len(signals)
        assert sum(s.score for s in result) <= sum(s.score for s in signals)


class TestReportingHelpers:
    """Tests for category grouping and impact reporting."""

    def test_group_by_category(self):
        signals = [
            spf_pass(),
            Signal(type=DeterministicSignalType.FINANCIAL_REQUEST, severity=Severity.CRITICAL,
                   score=35, detail="wire transfer"),
            tracking_signal("https://a.example/"),
        ]
        groups = group_signals_by_category(signals)
        assert [g.category for g in groups] == ["content", "url", "authentication"]
        assert groups[0].total_score == 35

    def test_impact(self):
        original = [tracking_signal(f"https://a.example/{i}") for i in range(6)]
        deduplicated = deduplicate_signals(original)
        impact = calculate_deduplication_impact(original, deduplicated)
        assert impact.score_reduction == 25
        assert impact.percent_reduction == pytest.approx(83.33, abs=0.01)
        assert impact.to_dict()["deduplicated_signal_count"] == 1
