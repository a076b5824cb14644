"""
MailShield Enrichment Tests

Tests for threat-feed consensus, caching, click-time checks and feed clients.
"""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest

from conftest import make_failing_feed, make_feed, make_slow_feed
from mailshield.models.signals import ThreatIntelSignalType
from mailshield.models.threat_intel import FeedVerdict, IndicatorType
from mailshield.services.enrichment.base import APIStatus, detect_indicator_type
from mailshield.services.enrichment.cache import ThreatFeedCache
from mailshield.services.enrichment.click_time import ClickTimeChecker
from mailshield.services.enrichment.consensus import ThreatIntelAggregator, threat_intel_signals
from mailshield.services.enrichment.phishtank import PhishTankClient
from mailshield.services.enrichment.urlhaus import URLhausClient
from mailshield.utils.exceptions import FeedTimeoutError, FeedUnavailableError


BAD_URL = "http://evil-login.example/verify"


class TestConsensus:
    """Tests for reliability-weighted consensus across feeds."""

    def test_agreeing_reliable_feeds(self):
        """Two reliable feeds calling it malicious give a confident verdict."""
        async def run():
            aggregator = ThreatIntelAggregator([
                make_feed("urlhaus", FeedVerdict.MALICIOUS, 85, 0.85),
                make_feed("phishtank", FeedVerdict.MALICIOUS, 90, 0.80),
            ])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.consensus_score >= 80
        assert result.confidence >= 0.8
        assert result.consensus_verdict == FeedVerdict.MALICIOUS
        assert not result.disagreement
        assert result.agreement_ratio == 1.0

    def test_conflicting_feeds_flag_disagreement(self):
        """A clean and a malicious verdict halve agreement."""
        async def run():
            aggregator = ThreatIntelAggregator([
                make_feed("feed_a", FeedVerdict.CLEAN, 10, 0.7),
                make_feed("feed_b", FeedVerdict.MALICIOUS, 95, 0.9),
            ])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.agreement_ratio == 0.5
        assert result.confidence < 0.7
        assert result.disagreement

        types = [s.type for s in threat_intel_signals(result)]
        assert ThreatIntelSignalType.THREAT_INTEL_DISAGREEMENT in types

    @pytest.mark.parametrize("reliability", [0.3, 0.5])
    def test_unanimous_low_reliability_feeds(self, reliability):
        """Unanimous verdicts stay confident even from weakly trusted feeds."""
        async def run():
            aggregator = ThreatIntelAggregator([
                make_feed("feed_a", FeedVerdict.MALICIOUS, 85, reliability),
                make_feed("feed_b", FeedVerdict.MALICIOUS, 90, reliability),
            ])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.agreement_ratio == 1.0
        assert result.confidence >= 0.8
        assert not result.disagreement
        types = [s.type for s in threat_intel_signals(result)]
        assert ThreatIntelSignalType.THREAT_INTEL_DISAGREEMENT not in types

    def test_single_feed_is_not_unanimous(self):
        async def run():
            aggregator = ThreatIntelAggregator([make_feed("feed_a", FeedVerdict.MALICIOUS, 90, 0.5)])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.confidence == 0.75
        assert not result.disagreement

    def test_configured_reliability_wins(self):
        """Known feed names use the configured weight, not the self-reported one."""
        feed = make_feed("virustotal", FeedVerdict.MALICIOUS, 90, 0.1)
        aggregator = ThreatIntelAggregator([feed])
        assert aggregator.reliability_for(feed) == 0.95

        other = make_feed("homegrown", FeedVerdict.MALICIOUS, 90, 0.42)
        assert aggregator.reliability_for(other) == 0.42

    def test_three_feed_bonus(self):
        """Three agreeing feeds get the multi-source bonus, capped at 1."""
        async def run():
            aggregator = ThreatIntelAggregator([
                make_feed("urlhaus", FeedVerdict.MALICIOUS, 95, 0.85),
                make_feed("phishtank", FeedVerdict.MALICIOUS, 90, 0.80),
                make_feed("virustotal", FeedVerdict.MALICIOUS, 92, 0.95),
            ])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.confidence == 1.0

    def test_unknown_verdicts_do_not_participate(self):
        async def run():
            aggregator = ThreatIntelAggregator([
                make_feed("urlhaus", FeedVerdict.UNKNOWN, 0, 0.85),
                make_feed("phishtank", FeedVerdict.MALICIOUS, 90, 0.80),
            ])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.consensus_score == 90
        assert result.agreement_ratio == 1.0

    def test_no_feeds_answering(self):
        async def run():
            aggregator = ThreatIntelAggregator([make_failing_feed("urlhaus")])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.consensus_verdict == FeedVerdict.UNKNOWN
        assert result.consensus_score == 0
        assert result.confidence == 0.0


class TestFeedFailures:
    """Tests for feeds that time out or raise."""

    def test_timed_out_feed_recorded(self):
        """A slow feed is cut off and reported without blocking the others."""
        async def run():
            aggregator = ThreatIntelAggregator(
                [make_feed("urlhaus", FeedVerdict.MALICIOUS, 95, 0.85), make_slow_feed("phishtank")],
                feed_timeouts={"phishtank": 0.05},
            )
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        phishtank = result.sources["phishtank"]
        assert phishtank.timed_out
        assert not phishtank.available
        assert [s.source for s in result.responding_sources] == ["urlhaus"]
        assert result.consensus_score == 95

        signals = threat_intel_signals(result)
        timeouts = [s for s in signals if s.type == ThreatIntelSignalType.CHECK_TIMEOUT]
        assert len(timeouts) == 1
        assert timeouts[0].score == 0

    def test_raising_feed_recorded(self):
        async def run():
            aggregator = ThreatIntelAggregator([
                make_feed("urlhaus", FeedVerdict.CLEAN, 0, 0.85),
                make_failing_feed("phishtank", RuntimeError("HTTP 500")),
            ])
            return await aggregator.check(BAD_URL)

        result = asyncio.run(run())
        assert result.sources["phishtank"].error == "HTTP 500"
        types = [s.type for s in threat_intel_signals(result)]
        assert ThreatIntelSignalType.FEED_ERROR in types

    def test_all_failed_not_cached(self):
        """Lookups where every feed failed are retried next time."""
        async def run():
            feed = make_failing_feed("urlhaus")
            aggregator = ThreatIntelAggregator([feed])
            await aggregator.check(BAD_URL)
            await aggregator.check(BAD_URL)
            return feed

        feed = asyncio.run(run())
        assert feed.lookup.await_count == 2


class TestAggregatorCache:
    """Tests for consensus result caching."""

    def test_second_lookup_served_from_cache(self, clock):
        async def run():
            feed = make_feed("urlhaus", FeedVerdict.MALICIOUS, 95, 0.85)
            aggregator = ThreatIntelAggregator([feed], cache=ThreatFeedCache(clock=clock))
            first = await aggregator.check(BAD_URL)
            second = await aggregator.check(BAD_URL)
            return feed, first, second

        feed, first, second = asyncio.run(run())
        assert not first.from_cache
        assert second.from_cache
        assert second.consensus_score == first.consensus_score
        assert feed.lookup.await_count == 1

    def test_force_refresh_bypasses_cache(self, clock):
        async def run():
            feed = make_feed("urlhaus", FeedVerdict.MALICIOUS, 95, 0.85)
            aggregator = ThreatIntelAggregator([feed], cache=ThreatFeedCache(clock=clock))
            await aggregator.check(BAD_URL)
            refreshed = await aggregator.check(BAD_URL, force_refresh=True)
            return feed, refreshed

        feed, refreshed = asyncio.run(run())
        assert not refreshed.from_cache
        assert feed.lookup.await_count == 2

    def test_cache_expiry(self, clock):
        async def run():
            feed = make_feed("urlhaus", FeedVerdict.MALICIOUS, 95, 0.85)
            cache = ThreatFeedCache(url_ttl=60, clock=clock)
            aggregator = ThreatIntelAggregator([feed], cache=cache)
            await aggregator.check(BAD_URL)
            clock.advance(61)
            again = await aggregator.check(BAD_URL)
            return feed, again

        feed, again = asyncio.run(run())
        assert not again.from_cache
        assert feed.lookup.await_count == 2

    def test_check_many_dedupes(self):
        async def run():
            feed = make_feed("urlhaus", FeedVerdict.CLEAN, 0, 0.85)
            aggregator = ThreatIntelAggregator([feed])
            results = await aggregator.check_many([BAD_URL, BAD_URL, "http://other.example/"])
            return feed, results

        feed, results = asyncio.run(run())
        assert len(results) == 2
        assert feed.lookup.await_count == 2


class TestThreatFeedCache:
    """Tests for per-kind TTLs."""

    def test_kinds_expire_independently(self, clock):
        from mailshield.models.threat_intel import ThreatIntelResult

        cache = ThreatFeedCache(url_ttl=10, domain_ttl=100, ip_ttl=50, clock=clock)
        cache.set(ThreatIntelResult(indicator="http://a.example/", indicator_type=IndicatorType.URL))
        cache.set(ThreatIntelResult(indicator="a.example", indicator_type=IndicatorType.DOMAIN))
        cache.set(ThreatIntelResult(indicator="10.0.0.1", indicator_type=IndicatorType.IP))

        clock.advance(20)
        assert cache.get("http://a.example/", IndicatorType.URL) is None
        assert cache.get("a.example", IndicatorType.DOMAIN) is not None
        assert cache.get("10.0.0.1", IndicatorType.IP) is not None

        clock.advance(40)
        assert cache.cleanup() == 1
        assert cache.get("a.example", IndicatorType.DOMAIN) is not None

    def test_keys_are_normalized(self, clock):
        from mailshield.models.threat_intel import ThreatIntelResult

        cache = ThreatFeedCache(clock=clock)
        cache.set(ThreatIntelResult(indicator="Evil.Example", indicator_type=IndicatorType.DOMAIN))
        assert cache.get("evil.example", IndicatorType.DOMAIN) is not None
        assert cache.evict("EVIL.example", IndicatorType.DOMAIN)

    def test_indicator_type_detection(self):
        assert detect_indicator_type("https://x.example/a") == IndicatorType.URL
        assert detect_indicator_type("192.168.1.1") == IndicatorType.IP
        assert detect_indicator_type("x.example") == IndicatorType.DOMAIN


class TestClickTime:
    """Tests for click-time URL protection."""

    def _checker(self, feeds, clock, **kwargs):
        aggregator = ThreatIntelAggregator(feeds, cache=ThreatFeedCache(clock=clock))
        return ClickTimeChecker(aggregator, clock=clock, **kwargs)

    def test_actions_by_score(self, clock):
        async def run(score, verdict):
            checker = self._checker([make_feed("urlhaus", verdict, score, 0.85)], clock)
            return await checker.check(BAD_URL)

        assert asyncio.run(run(95, FeedVerdict.MALICIOUS)).action == "block"
        assert asyncio.run(run(50, FeedVerdict.SUSPICIOUS)).action == "warn"
        assert asyncio.run(run(0, FeedVerdict.CLEAN)).action == "allow"

    def test_timeout_allows_click(self, clock):
        """A slow lookup fails open with a check_timeout signal."""
        async def run():
            checker = self._checker([make_slow_feed("urlhaus", delay=1.0)], clock, timeout=0.05)
            return await checker.check(BAD_URL)

        verdict = asyncio.run(run())
        assert verdict.action == "allow"
        assert verdict.timed_out
        assert verdict.signals[0].type == ThreatIntelSignalType.CHECK_TIMEOUT
        assert verdict.signals[0].score == 0

    def test_timeout_not_cached(self, clock):
        async def run():
            checker = self._checker([make_slow_feed("urlhaus", delay=1.0)], clock, timeout=0.05)
            await checker.check(BAD_URL)
            return checker

        checker = asyncio.run(run())
        assert len(checker.cache) == 0

    def test_all_feeds_failed_not_cached(self, clock):
        """A fail-open verdict is not reused once the feeds recover."""
        async def run():
            feed = make_failing_feed("urlhaus")
            checker = self._checker([feed], clock)
            first = await checker.check(BAD_URL)
            second = await checker.check(BAD_URL)
            return feed, first, second

        feed, first, second = asyncio.run(run())
        assert first.action == "allow"
        assert not second.from_cache
        assert feed.lookup.await_count == 2

    def test_cached_verdict(self, clock):
        async def run():
            feed = make_feed("urlhaus", FeedVerdict.MALICIOUS, 95, 0.85)
            checker = self._checker([feed], clock)
            await checker.check(BAD_URL)
            second = await checker.check(BAD_URL)
            return feed, second

        feed, second = asyncio.run(run())
        assert second.from_cache
        assert second.action == "block"
        assert feed.lookup.await_count == 1

    def test_clear_expired(self, clock):
        async def run():
            checker = self._checker(
                [make_feed("urlhaus", FeedVerdict.CLEAN, 0, 0.85)], clock,
                cache=None,
            )
            await checker.check(BAD_URL)
            return checker

        checker = asyncio.run(run())
        clock.advance(checker.cache.ttl_seconds + 1)
        assert checker.clear_expired() == 1


class TestFeedClients:
    """Tests for URLhaus and PhishTank response handling."""

    def test_urlhaus_online_url(self):
        client = URLhausClient()
        lookup = client._parse_url_response({
            "query_status": "ok",
            "url_status": "online",
            "tags": ["emotet"],
            "payloads": [{"signature": "Emotet"}],
        })
        assert lookup.verdict == FeedVerdict.MALICIOUS
        assert lookup.score == 95
        assert lookup.malware_family == "Emotet"
        assert lookup.tags == ["emotet"]

    def test_urlhaus_no_results(self):
        lookup = URLhausClient()._parse_url_response({"query_status": "no_results"})
        assert lookup.verdict == FeedVerdict.CLEAN

    def test_urlhaus_needs_no_key(self):
        assert URLhausClient().is_configured

    def test_phishtank_verified(self):
        lookup = PhishTankClient()._parse_response({
            "results": {"in_database": True, "verified": True, "valid": True, "phish_id": 1},
        })
        assert lookup.verdict == FeedVerdict.MALICIOUS
        assert lookup.score == 90

    def test_phishtank_not_in_database(self):
        lookup = PhishTankClient()._parse_response({"results": {"in_database": False}})
        assert lookup.verdict == FeedVerdict.CLEAN

    def test_connection_error_marks_status(self):
        async def run():
            client = URLhausClient()
            client.INITIAL_BACKOFF = 0
            client._request = AsyncMock(side_effect=aiohttp.ClientError("refused"))
            with pytest.raises(FeedUnavailableError):
                await client.lookup(BAD_URL)
            return client

        client = asyncio.run(run())
        assert client.status.status == APIStatus.ERROR
        assert client.status.requests_failed == client.MAX_RETRIES

    def test_request_timeout_is_not_retried(self):
        async def run():
            client = URLhausClient(timeout=1)
            client._request = AsyncMock(side_effect=asyncio.TimeoutError())
            with pytest.raises(FeedTimeoutError):
                await client.lookup(BAD_URL)
            return client

        client = asyncio.run(run())
        assert client._request.await_count == 1
        assert client.status.last_error_message == "Timed out after 1s"

    def test_client_timeout_reported_as_timed_out(self):
        async def run():
            feed = make_failing_feed("urlhaus", FeedTimeoutError("urlhaus timed out after 1s"))
            return await ThreatIntelAggregator([feed]).check(BAD_URL)

        result = asyncio.run(run())
        assert result.sources["urlhaus"].timed_out
