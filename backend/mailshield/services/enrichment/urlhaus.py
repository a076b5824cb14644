"""
MailShield URLhaus Client

Malware URL lookups via the abuse.ch URLhaus API. URLs are checked
against the ``/url/`` endpoint; domains and IPs against ``/host/``.
"""

import logging
from typing import Any, Dict, Optional

import aiohttp

from mailshield.models.threat_intel import FeedLookup, FeedVerdict, IndicatorType
from mailshield.utils.constants import URLHAUS_API_URL

from .base import BaseFeedClient, detect_indicator_type

logger = logging.getLogger(__name__)


ONLINE_SCORE = 95
OFFLINE_SCORE = 60
HOST_HISTORY_SCORE = 50


class URLhausClient(BaseFeedClient):
    """
    URLhaus API integration (abuse.ch).

    Verdicts:
        - URL listed and online: malicious
        - URL listed but offline: suspicious (it was malicious)
        - host with any online URL: malicious, with listed URLs only: suspicious
        - not listed: clean
    """

    name = "urlhaus"

    def __init__(
        self,
        auth_key: Optional[str] = None,
        timeout: Optional[float] = None,
        reliability: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = URLHAUS_API_URL,
    ):
        super().__init__(api_key=auth_key, timeout=timeout, reliability=reliability, session=session)
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {"Auth-Key": self.api_key} if self.api_key else {}

    async def lookup(self, indicator: str) -> FeedLookup:
        if detect_indicator_type(indicator) == IndicatorType.URL:
            data = await self._post_json(f"{self.base_url}/url/", {"url": indicator}, self._headers())
            return self._parse_url_response(data)
        data = await self._post_json(f"{self.base_url}/host/", {"host": indicator}, self._headers())
        return self._parse_host_response(data)

    def _parse_url_response(self, data: Dict[str, Any]) -> FeedLookup:
        query_status = data.get("query_status", "")
        if query_status == "no_results":
            return FeedLookup(verdict=FeedVerdict.CLEAN, score=0, reliability=self.reliability)
        if query_status != "ok":
            return FeedLookup(
                verdict=FeedVerdict.UNKNOWN, score=0, reliability=self.reliability,
                raw_data={"query_status": query_status},
            )

        url_status = data.get("url_status", "unknown")
        if url_status == "online":
            verdict, score = FeedVerdict.MALICIOUS, ONLINE_SCORE
        else:
            verdict, score = FeedVerdict.SUSPICIOUS, OFFLINE_SCORE

        payloads = data.get("payloads") or []
        signatures = [p.get("signature") for p in payloads if p.get("signature")]

        return FeedLookup(
            verdict=verdict,
            score=score,
            reliability=self.reliability,
            malware_family=signatures[0] if signatures else None,
            tags=list(data.get("tags") or []),
            raw_data={
                "url_status": url_status,
                "threat": data.get("threat"),
                "date_added": data.get("date_added"),
                "urlhaus_reference": data.get("urlhaus_reference"),
            },
        )

    def _parse_host_response(self, data: Dict[str, Any]) -> FeedLookup:
        query_status = data.get("query_status", "")
        if query_status == "no_results":
            return FeedLookup(verdict=FeedVerdict.CLEAN, score=0, reliability=self.reliability)
        if query_status != "ok":
            return FeedLookup(
                verdict=FeedVerdict.UNKNOWN, score=0, reliability=self.reliability,
                raw_data={"query_status": query_status},
            )

        urls = data.get("urls") or []
        url_count = int(data.get("url_count") or len(urls))
        online_count = sum(1 for u in urls if u.get("url_status") == "online")

        if online_count > 0:
            verdict, score = FeedVerdict.MALICIOUS, ONLINE_SCORE
        elif url_count > 0:
            verdict, score = FeedVerdict.SUSPICIOUS, HOST_HISTORY_SCORE
        else:
            verdict, score = FeedVerdict.CLEAN, 0

        tags = []
        for entry in urls:
            for tag in entry.get("tags") or []:
                if tag not in tags:
                    tags.append(tag)

        return FeedLookup(
            verdict=verdict,
            score=score,
            reliability=self.reliability,
            tags=tags[:10],
            raw_data={"url_count": url_count, "online_count": online_count},
        )
