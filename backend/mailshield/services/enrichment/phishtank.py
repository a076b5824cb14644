"""
MailShield PhishTank Client

Phishing URL lookups via the PhishTank checkurl API. PhishTank only
knows URLs; domain and IP indicators are answered as unknown without a
network call.
"""

import logging
from typing import Any, Dict, Optional

import aiohttp

from mailshield.models.threat_intel import FeedLookup, FeedVerdict, IndicatorType
from mailshield.utils.constants import PHISHTANK_API_URL

from .base import BaseFeedClient, detect_indicator_type

logger = logging.getLogger(__name__)


VERIFIED_SCORE = 90
UNVERIFIED_SCORE = 60


class PhishTankClient(BaseFeedClient):
    """
    PhishTank API integration.

    The application key is optional but raises the rate limit.
    """

    name = "phishtank"

    def __init__(
        self,
        app_key: Optional[str] = None,
        timeout: Optional[float] = None,
        reliability: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
        endpoint: str = PHISHTANK_API_URL,
    ):
        super().__init__(api_key=app_key, timeout=timeout, reliability=reliability, session=session)
        self.endpoint = endpoint

    async def lookup(self, indicator: str) -> FeedLookup:
        if detect_indicator_type(indicator) != IndicatorType.URL:
            return FeedLookup(verdict=FeedVerdict.UNKNOWN, score=0, reliability=self.reliability)

        data = {"url": indicator, "format": "json"}
        if self.api_key:
            data["app_key"] = self.api_key
        response = await self._post_json(self.endpoint, data)
        return self._parse_response(response)

    def _parse_response(self, response: Dict[str, Any]) -> FeedLookup:
        results = response.get("results")
        if not isinstance(results, dict):
            return FeedLookup(verdict=FeedVerdict.UNKNOWN, score=0, reliability=self.reliability)

        if not results.get("in_database", False):
            return FeedLookup(verdict=FeedVerdict.CLEAN, score=0, reliability=self.reliability)

        verified = bool(results.get("verified")) and results.get("valid", True) is not False
        return FeedLookup(
            verdict=FeedVerdict.MALICIOUS if verified else FeedVerdict.SUSPICIOUS,
            score=VERIFIED_SCORE if verified else UNVERIFIED_SCORE,
            reliability=self.reliability,
            tags=["phishing"],
            raw_data={
                "phish_id": results.get("phish_id"),
                "verified": results.get("verified"),
                "verified_at": results.get("verified_at"),
                "phish_detail_url": results.get("phish_detail_url"),
            },
        )
