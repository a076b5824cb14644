"""
MailShield Threat Feed Client Base

Every reputation feed exposes the same collaborator interface:

    await client.lookup(indicator) -> FeedLookup

A client raises FeedUnavailableError or FeedTimeoutError when it cannot
answer; the aggregator records the failure and continues with the
remaining feeds. Deadlines are enforced by the caller
cancelling the lookup task, which also abandons the underlying request.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import aiohttp

from mailshield.config.settings import get_settings
from mailshield.models.threat_intel import FeedLookup, IndicatorType
from mailshield.utils.constants import DEFAULT_FEED_RELIABILITY, FEED_RELIABILITY
from mailshield.utils.exceptions import (
    FeedNotConfiguredError,
    FeedTimeoutError,
    FeedUnavailableError,
)
from mailshield.utils.helpers import is_ip_address, utc_now

logger = logging.getLogger(__name__)


@runtime_checkable
class FeedClient(Protocol):
    """Collaborator interface for a reputation feed."""

    name: str
    reliability: float

    async def lookup(self, indicator: str) -> FeedLookup:
        ...


def detect_indicator_type(indicator: str) -> IndicatorType:
    value = indicator.strip()
    if "://" in value:
        return IndicatorType.URL
    if is_ip_address(value):
        return IndicatorType.IP
    return IndicatorType.DOMAIN


class APIStatus(str, Enum):
    """Feed availability status."""
    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    UNCONFIGURED = "unconfigured"
    UNKNOWN = "unknown"


@dataclass
class APIStatusInfo:
    """Tracks feed status and usage."""
    provider_name: str
    status: APIStatus = APIStatus.UNKNOWN
    last_success: Optional[datetime] = None
    last_error: Optional[datetime] = None
    last_error_message: Optional[str] = None
    requests_made: int = 0
    requests_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_name,
            "status": self.status.value,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error.isoformat() if self.last_error else None,
            "last_error_message": self.last_error_message,
            "requests_made": self.requests_made,
            "requests_failed": self.requests_failed,
        }


class BaseFeedClient(ABC):
    """
    Base class for aiohttp-backed feed clients.

    Features:
    - retry with exponential backoff on connection errors and rate limits
    - status tracking for the health endpoint
    - optional shared ``aiohttp.ClientSession``
    """

    name: str = "base"
    requires_api_key: bool = False

    MAX_RETRIES: int = 2
    INITIAL_BACKOFF: float = 0.25
    BACKOFF_MULTIPLIER: float = 2.0
    RATE_LIMIT_STATUS_CODES = {429, 503}

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        reliability: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else get_settings().feed_timeout_seconds
        self.reliability = (
            reliability if reliability is not None
            else FEED_RELIABILITY.get(self.name, DEFAULT_FEED_RELIABILITY)
        )
        self._session = session
        self._status = APIStatusInfo(provider_name=self.name)
        if not self.is_configured:
            self._status.status = APIStatus.UNCONFIGURED

    @property
    def is_configured(self) -> bool:
        if not self.requires_api_key:
            return True
        return bool(self.api_key)

    @property
    def status(self) -> APIStatusInfo:
        return self._status

    def _record_success(self) -> None:
        self._status.last_success = utc_now()
        self._status.requests_made += 1
        self._status.status = APIStatus.AVAILABLE

    def _record_failure(self, error_msg: str, is_rate_limit: bool = False) -> None:
        self._status.last_error = utc_now()
        self._status.last_error_message = error_msg
        self._status.requests_made += 1
        self._status.requests_failed += 1
        self._status.status = APIStatus.RATE_LIMITED if is_rate_limit else APIStatus.ERROR

    async def _post_json(
        self,
        endpoint: str,
        data: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST form data and decode the JSON answer, retrying transient failures."""
        if not self.is_configured:
            raise FeedNotConfiguredError(f"{self.name} API key not configured")

        backoff = self.INITIAL_BACKOFF
        last_error = "unknown error"
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                result = await self._request(endpoint, data, headers)
                self._record_success()
                return result
            except asyncio.TimeoutError:
                self._record_failure(f"Timed out after {self.timeout}s")
                raise FeedTimeoutError(f"{self.name} timed out after {self.timeout}s")
            except aiohttp.ClientResponseError as e:
                is_rate_limit = e.status in self.RATE_LIMIT_STATUS_CODES
                self._record_failure(f"HTTP {e.status}", is_rate_limit=is_rate_limit)
                last_error = f"HTTP {e.status}"
                if not is_rate_limit:
                    break
                logger.warning(f"{self.name}: rate limited on attempt {attempt}")
            except (aiohttp.ClientError, ValueError) as e:
                self._record_failure(str(e))
                last_error = f"Connection error: {e}"
                logger.warning(f"{self.name}: connection error on attempt {attempt}: {e}")

            if attempt < self.MAX_RETRIES:
                await asyncio.sleep(backoff)
                backoff *= self.BACKOFF_MULTIPLIER

        raise FeedUnavailableError(f"{self.name} unavailable: {last_error}")

    async def _request(
        self,
        endpoint: str,
        data: Dict[str, Any],
        headers: Optional[Dict[str, str]],
    ) -> Dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        if self._session is not None:
            async with self._session.post(endpoint, data=data, headers=headers, timeout=timeout) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

        async with aiohttp.ClientSession() as session:
            async with session.post(endpoint, data=data, headers=headers, timeout=timeout) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    @abstractmethod
    async def lookup(self, indicator: str) -> FeedLookup:
        """Look up a URL, domain or IP."""
        pass
