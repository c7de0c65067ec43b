"""
Signature layer: external threat intelligence.

Queries every configured service concurrently and converts each outcome
(cache hit, rate-limit rejection, clean or malicious answer, failure) into
exactly one signature-layer DetectionSignal, in service order.

Rate limits (defaults, see config.DEFAULT_RATE_LIMITS):
- Google Safe Browsing: 60 req/min
- PhishTank: 30 req/min
- VirusTotal: 500 req/day
"""

import asyncio
import logging
import math
import time
from typing import Callable, Iterable, Optional

from ..cache import CacheManager
from ..config import Config
from ..constants import DetectionLayer, IntelService
from .intel_services import (
    NOT_CONFIGURED,
    BaseIntelService,
    ConfigurationError,
    IntelResponse,
    build_services,
)
from .models import DetectionSignal
from .rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)

RATE_LIMITED = "Rate limit exceeded"
TIMED_OUT = "Request timed out"
CACHED_SUFFIX = " (cached)"


def response_to_signal(response: IntelResponse, cached: bool = False) -> DetectionSignal:
    """Convert a service answer into a signature-layer signal."""
    service = response.service

    if not response.success:
        name = service.display_name
        return DetectionSignal(
            layer=DetectionLayer.SIGNATURE,
            method=name,
            score=0,
            matched=False,
            details=f"{name} check failed: {response.error or 'Unknown error'}",
            source=service,
        )

    source = response.source or service.display_name
    if cached:
        source = f"{source}{CACHED_SUFFIX}"

    if response.malicious:
        details = f"Flagged as malicious by {source}"
        if response.detections:
            details += f" ({response.detections} detections)"
        return DetectionSignal(
            layer=DetectionLayer.SIGNATURE,
            method=source,
            score=100,
            matched=True,
            details=details,
            source=service,
        )

    details = f"Checked by {source} - Clean"
    if response.details == NOT_CONFIGURED:
        details += f" ({NOT_CONFIGURED})"
    return DetectionSignal(
        layer=DetectionLayer.SIGNATURE,
        method=source,
        score=0,
        matched=False,
        details=details,
        source=service,
    )


class IntelligenceGateway:
    """
    Fan-out over external intelligence services.

    Owns a TTL cache per service and a fixed-window rate limiter per
    service. Per call the order is cache, then rate limiter, then the
    service itself. Only live successful answers are cached; malicious
    answers are kept for the malicious-URL TTL.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        services: Optional[Iterable[BaseIntelService]] = None,
        rate_limiters: Optional[RateLimiterRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or Config()
        self.services = list(services) if services is not None else build_services(self.config)

        seen: set[IntelService] = set()
        for service in self.services:
            if service.service in seen:
                raise ConfigurationError(f"Duplicate intelligence service: {service.service.value}")
            seen.add(service.service)

        self.rate_limiters = rate_limiters or RateLimiterRegistry(clock=clock)
        self._caches = {
            service.service: CacheManager(
                ttl_seconds=self.config.safe_url_ttl,
                namespace=service.service.value,
                max_entries=self.config.max_cache_size,
                evict_fraction=self.config.cache_evict_fraction,
                clock=clock,
            )
            for service in self.services
        }

    async def check_all(self, url: str) -> list[DetectionSignal]:
        """Check url against every service; one signal per service."""
        results = await asyncio.gather(
            *(self._check_service(service, url) for service in self.services),
            return_exceptions=True,
        )

        signals: list[DetectionSignal] = []
        for service, result in zip(self.services, results):
            if isinstance(result, BaseException):
                name = service.display_name
                logger.debug(f"{name} check skipped: {result!r}")
                signals.append(DetectionSignal(
                    layer=DetectionLayer.SIGNATURE,
                    method=name,
                    score=0,
                    matched=False,
                    details=f"{name} unavailable: {result}",
                    source=service.service,
                ))
            else:
                signals.append(result)
        return signals

    async def _check_service(self, service: BaseIntelService, url: str) -> DetectionSignal:
        cache = self._caches[service.service]
        cached = cache.get(url)
        if cached is not None:
            logger.debug(f"{service.display_name} cache hit for {url}")
            return response_to_signal(cached, cached=True)

        limit, window = self.config.rate_limit(service.service.value)
        limiter = self.rate_limiters.get(service.service.value, limit, window)
        if not limiter.try_acquire():
            retry_in = math.ceil(limiter.wait_time())
            logger.warning(f"{service.display_name} rate limit reached; skipping check for {retry_in}s")
            return response_to_signal(
                IntelResponse.failure(service.service, f"{RATE_LIMITED} (retry in {retry_in}s)")
            )

        try:
            response = await service.check(url)
        except asyncio.TimeoutError:
            logger.debug(f"{service.display_name} timeout for {url}")
            response = IntelResponse.failure(service.service, TIMED_OUT)
        except Exception as e:
            logger.debug(f"{service.display_name} error for {url}: {e}")
            response = IntelResponse.failure(service.service, str(e) or type(e).__name__)

        if response.success and response.live:
            ttl = self.config.malicious_url_ttl if response.malicious else None
            cache.set(url, response, ttl_seconds=ttl)

        return response_to_signal(response)

    def clear_cache(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    def cache_stats(self) -> dict[str, dict]:
        return {service.value: cache.stats() for service, cache in self._caches.items()}
