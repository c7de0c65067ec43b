"""
External threat intelligence services.

One client per service, all sharing the same contract: `check(url)` returns
an IntelResponse or raises an IntelServiceError. Turning answers and errors
into detection signals is the gateway's job (see external_intel.py).

- Google Safe Browsing v4: falls back to a local pattern blocklist without a key
- PhishTank: neutral "not configured" answer without a key
- VirusTotal v3: failure answer without a key
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

import aiohttp

from ..constants import LOCAL_BLOCKLIST_SOURCE, IntelService

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "API key not configured"


class IntelServiceError(Exception):
    """Base exception for intelligence service errors."""

    pass


class RateLimitError(IntelServiceError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int, message: str = "Rate limit exceeded"):
        self.retry_after = retry_after
        self.message = message
        super().__init__(f"{message}. Retry after {retry_after} seconds.")


class APIError(IntelServiceError):
    """API returned an error."""

    def __init__(self, status_code: int, message: str, response_body: str = ""):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"API error {status_code}: {message}")


class ConfigurationError(IntelServiceError):
    """Service not properly configured."""

    pass


@dataclass(frozen=True)
class IntelResponse:
    """Answer from one external service."""

    service: IntelService
    success: bool
    malicious: bool = False
    source: str = ""  # Display name of whoever answered
    details: str = ""
    error: Optional[str] = None
    detections: int = 0
    live: bool = True  # False for fallbacks that never reached the service

    @classmethod
    def failure(cls, service: IntelService, error: str, live: bool = True) -> "IntelResponse":
        return cls(
            service=service,
            success=False,
            source=service.display_name,
            error=error,
            live=live,
        )


def check_local_blocklist(
    url: str,
    patterns: Iterable[str],
    service: IntelService = IntelService.SAFE_BROWSING,
) -> IntelResponse:
    """Match the URL against local regex patterns (case-insensitive)."""
    try:
        compiled = [re.compile(p, re.IGNORECASE) for p in patterns]
    except re.error as e:
        logger.warning(f"Invalid local blocklist pattern: {e}")
        return IntelResponse(
            service=service,
            success=False,
            source=LOCAL_BLOCKLIST_SOURCE,
            error="Error checking local blacklist",
            live=False,
        )

    listed = any(p.search(url) for p in compiled)
    return IntelResponse(
        service=service,
        success=True,
        malicious=listed,
        source=LOCAL_BLOCKLIST_SOURCE,
        details="Matched local blacklist pattern" if listed else "Not in local blacklist",
        live=False,
    )


class BaseIntelService(ABC):
    """Abstract base class for external intelligence services."""

    service: IntelService
    requires_api_key: bool = True

    def __init__(self, api_key: str = "", timeout: float = 10.0):
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        self._configured = bool(self.api_key) or not self.requires_api_key

    @property
    def display_name(self) -> str:
        return self.service.display_name

    def is_configured(self) -> bool:
        """Check if this service has the credentials it needs."""
        return self._configured

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)

    @abstractmethod
    async def check(self, url: str) -> IntelResponse:
        """
        Look up a URL.

        Raises:
            IntelServiceError: the service answered with an error
            aiohttp.ClientError / asyncio.TimeoutError: transport failure
        """
        pass


class SafeBrowsingService(BaseIntelService):
    """Google Safe Browsing v4 threatMatches lookup."""

    service = IntelService.SAFE_BROWSING
    api_url = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
    client_id = "urlsentry"
    client_version = "1.0.0"

    def __init__(self, api_key: str = "", timeout: float = 10.0, local_patterns: Iterable[str] = ()):
        super().__init__(api_key, timeout)
        self.local_patterns = list(local_patterns)

    async def check(self, url: str) -> IntelResponse:
        if not self.is_configured():
            return check_local_blocklist(url, self.local_patterns, self.service)

        body = {
            "client": {"clientId": self.client_id, "clientVersion": self.client_version},
            "threatInfo": {
                "threatTypes": [
                    "MALWARE",
                    "SOCIAL_ENGINEERING",
                    "UNWANTED_SOFTWARE",
                    "POTENTIALLY_HARMFUL_APPLICATION",
                ],
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.api_url,
                params={"key": self.api_key},
                json=body,
                timeout=self._client_timeout(),
            ) as resp:
                if resp.status != 200:
                    raise APIError(resp.status, "Safe Browsing lookup failed", await resp.text())
                data = await resp.json()

        matches = (data or {}).get("matches") or []
        if matches:
            threats = sorted({m.get("threatType", "UNKNOWN") for m in matches if isinstance(m, dict)})
            logger.debug(f"Safe Browsing: {url} matched {', '.join(threats)}")
        return IntelResponse(
            service=self.service,
            success=True,
            malicious=bool(matches),
            source=self.display_name,
        )


class PhishTankService(BaseIntelService):
    """PhishTank checkurl lookup."""

    service = IntelService.PHISHTANK
    api_url = "https://checkurl.phishtank.com/checkurl/"
    user_agent = "phishtank/urlsentry"

    async def check(self, url: str) -> IntelResponse:
        if not self.is_configured():
            return IntelResponse(
                service=self.service,
                success=True,
                malicious=False,
                source=self.display_name,
                details=NOT_CONFIGURED,
                live=False,
            )

        form = {"url": url, "format": "json", "app_key": self.api_key}
        headers = {"User-Agent": self.user_agent}

        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.api_url,
                data=form,
                headers=headers,
                timeout=self._client_timeout(),
            ) as resp:
                if resp.status == 429:
                    raise RateLimitError(_retry_after(resp.headers.get("Retry-After")))
                if resp.status != 200:
                    raise APIError(resp.status, "PhishTank unavailable", await resp.text())
                data = await resp.json(content_type=None)

        results = (data or {}).get("results") or {}
        malicious = results.get("in_database") is True and results.get("valid") is True
        return IntelResponse(
            service=self.service,
            success=True,
            malicious=malicious,
            source=self.display_name,
            details="Verified phish" if malicious else "",
        )


class VirusTotalService(BaseIntelService):
    """VirusTotal v3 URL report lookup."""

    service = IntelService.VIRUSTOTAL
    api_url = "https://www.virustotal.com/api/v3/urls/{url_id}"

    @staticmethod
    def url_id(url: str) -> str:
        """VirusTotal URL identifier: unpadded URL-safe base64 of the URL."""
        return base64.urlsafe_b64encode(url.encode()).decode().rstrip("=")

    async def check(self, url: str) -> IntelResponse:
        if not self.is_configured():
            return IntelResponse.failure(self.service, NOT_CONFIGURED, live=False)

        endpoint = self.api_url.format(url_id=self.url_id(url))
        headers = {"x-apikey": self.api_key}

        async with aiohttp.ClientSession() as session:
            async with session.get(endpoint, headers=headers, timeout=self._client_timeout()) as resp:
                if resp.status == 404:
                    # Never submitted to VirusTotal
                    return IntelResponse(
                        service=self.service,
                        success=True,
                        malicious=False,
                        source=self.display_name,
                        details="URL not in database",
                    )
                if resp.status == 429:
                    logger.warning("VirusTotal rate limit exceeded")
                    raise RateLimitError(_retry_after(resp.headers.get("Retry-After")))
                if resp.status != 200:
                    raise APIError(resp.status, "VirusTotal lookup failed", await resp.text())
                data = await resp.json()

        attrs = ((data or {}).get("data") or {}).get("attributes") or {}
        stats = attrs.get("last_analysis_stats") or {}
        detections = int(stats.get("malicious", 0) or 0) + int(stats.get("suspicious", 0) or 0)

        total = sum(v for v in stats.values() if isinstance(v, int))
        logger.debug(f"VirusTotal: {url} = {detections}/{total} flagged")
        return IntelResponse(
            service=self.service,
            success=True,
            malicious=detections > 0,
            source=self.display_name,
            detections=detections,
        )


def _retry_after(header: Optional[str], default: int = 60) -> int:
    try:
        return max(0, int(header)) if header else default
    except ValueError:
        return default


def build_services(config) -> list[BaseIntelService]:
    """Create the default service clients from configuration."""
    return [
        SafeBrowsingService(
            api_key=config.safe_browsing_api_key,
            timeout=config.intel_timeout,
            local_patterns=config.local_blocklist_patterns,
        ),
        PhishTankService(api_key=config.phishtank_api_key, timeout=config.intel_timeout),
        VirusTotalService(api_key=config.virustotal_api_key, timeout=config.intel_timeout),
    ]


__all__ = [
    "APIError",
    "BaseIntelService",
    "ConfigurationError",
    "IntelResponse",
    "IntelServiceError",
    "PhishTankService",
    "RateLimitError",
    "SafeBrowsingService",
    "VirusTotalService",
    "build_services",
    "check_local_blocklist",
    "NOT_CONFIGURED",
]
