"""
MailShield Test Configuration

Shared helpers: test emails, fake threat feeds and a controllable clock.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from mailshield.config.scoring import reset_scoring_config
from mailshield.config.settings import get_settings
from mailshield.models.email import EmailAddress, ParsedEmail
from mailshield.models.threat_intel import FeedLookup, FeedVerdict


class ManualClock:
    """Clock for TTL caches and rate limiters; advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def create_test_email(**kwargs):
    """Create a test email with default values."""
    defaults = {
        'message_id': '<test-001@example.com>',
        'subject': 'Test Email',
        'body_text': 'This is a test email.',
        'sender': EmailAddress.parse('Sender <sender@example.com>'),
        'recipients': ['recipient@company.com'],
        'urls': [],
    }
    defaults.update(kwargs)
    return ParsedEmail(**defaults)


def make_feed(name, verdict=FeedVerdict.CLEAN, score=0, reliability=0.8, **lookup_kwargs):
    """Feed client double whose lookup returns a fixed FeedLookup."""
    lookup = FeedLookup(verdict=verdict, score=score, reliability=reliability, **lookup_kwargs)
    return SimpleNamespace(
        name=name,
        reliability=reliability,
        lookup=AsyncMock(return_value=lookup),
    )


def make_slow_feed(name, delay=1.0, reliability=0.8):
    """Feed client double whose lookup never finishes inside short deadlines."""

    async def slow_lookup(indicator):
        await asyncio.sleep(delay)
        return FeedLookup(verdict=FeedVerdict.CLEAN, score=0, reliability=reliability)

    return SimpleNamespace(name=name, reliability=reliability, lookup=AsyncMock(side_effect=slow_lookup))


def make_failing_feed(name, error=None, reliability=0.8):
    return SimpleNamespace(
        name=name,
        reliability=reliability,
        lookup=AsyncMock(side_effect=error or RuntimeError("feed unavailable")),
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from default settings and scoring weights."""
    get_settings.cache_clear()
    reset_scoring_config()
    yield
    get_settings.cache_clear()
    reset_scoring_config()
