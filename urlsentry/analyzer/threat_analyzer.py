"""
Threat analyzer: orchestrates all detection layers into one verdict.

Priority logic:
1. External intelligence (Safe Browsing, PhishTank, VirusTotal) is the
   source of truth: any positive answer forces a Critical/100 verdict.
2. All layers still run so every verdict carries the full set of signals.
3. Without an external hit, matched signal scores are summed (capped at
   100) and mapped to a risk level.
4. Any internal error or deadline overrun fails open to Safe/0.
"""

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Iterable, Optional
from urllib.parse import urlsplit

from ..cache import CacheManager
from ..config import Config
from ..constants import (
    ERROR_HANDLER_METHOD,
    WHITELIST_METHOD,
    DetectionLayer,
    RiskLevel,
    clamp_score,
)
from ..utils.domains import canonicalize_domain, host_matches, normalize_url
from .external_intel import IntelligenceGateway
from .heuristics import HeuristicScorer
from .metrics import AnalysisMetrics
from .ml_proxy import ProxyMLScorer
from .models import AnalysisResult, DetectionSignal

logger = logging.getLogger(__name__)

# Diagnostic method names for a layer that raised during fan-out
LAYER_FAILURE_METHODS = {
    DetectionLayer.SIGNATURE: "Threat Intelligence",
    DetectionLayer.HEURISTIC: "Heuristic Engine",
    DetectionLayer.ML: "ML Model",
}


class InvalidURLError(ValueError):
    """URL has no host to analyze."""

    pass


class Whitelist:
    """Thread-safe set of trusted hosts; an entry also covers its subdomains."""

    def __init__(self, domains: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._domains: set[str] = set()
        for domain in domains:
            self.add(domain)

    def add(self, domain: str) -> str:
        """Add a domain (or URL); returns the canonical entry, "" if invalid."""
        entry = canonicalize_domain(domain)
        if entry:
            with self._lock:
                self._domains.add(entry)
        return entry

    def remove(self, domain: str) -> bool:
        entry = canonicalize_domain(domain)
        with self._lock:
            if entry in self._domains:
                self._domains.discard(entry)
                return True
        return False

    def contains(self, host: str) -> bool:
        with self._lock:
            domains = tuple(self._domains)
        return host_matches(host, domains)

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._domains)

    def __len__(self) -> int:
        with self._lock:
            return len(self._domains)


def _host_of(normalized_url: str) -> str:
    try:
        host = urlsplit(normalized_url).hostname or ""
    except ValueError as e:
        raise InvalidURLError(f"Invalid URL: {normalized_url!r}") from e
    host = host.strip(".")
    if not host:
        raise InvalidURLError(f"Invalid URL: {normalized_url!r}")
    return host


class ThreatAnalyzer:
    """
    Analyzes URLs across the signature, heuristic and ML layers.

    Owns the verdict cache, the whitelist and the metrics; the gateway owns
    the per-service caches and rate limiters. One instance is meant to be
    shared by every caller.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        gateway: Optional[IntelligenceGateway] = None,
        heuristics: Optional[HeuristicScorer] = None,
        ml_scorer: Optional[ProxyMLScorer] = None,
        metrics: Optional[AnalysisMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or Config()
        self.gateway = gateway or IntelligenceGateway(self.config, clock=clock)
        self.heuristics = heuristics or HeuristicScorer(self.config)
        self.ml_scorer = ml_scorer or ProxyMLScorer(self.config, extractor=self.heuristics.extractor)
        self.metrics = metrics or AnalysisMetrics()
        self.thresholds = self.config.thresholds

        self.whitelist = Whitelist(self.config.allowlist)
        self._cache = CacheManager(
            ttl_seconds=self.config.safe_url_ttl,
            namespace="results",
            max_entries=self.config.max_cache_size,
            evict_fraction=self.config.cache_evict_fraction,
            clock=clock,
        )

    async def analyze(self, url: str, timeout: Optional[float] = None) -> AnalysisResult:
        """
        Analyze a URL and return a verdict. Never raises.

        Args:
            url: Raw URL from the navigation source
            timeout: Deadline in seconds (defaults to config.analysis_timeout)
        """
        deadline = timeout if timeout is not None else self.config.analysis_timeout

        try:
            if deadline is not None:
                result = await asyncio.wait_for(self._analyze(url), timeout=deadline)
            else:
                result = await self._analyze(url)
        except asyncio.TimeoutError:
            logger.warning(f"Analysis of {url} timed out after {deadline}s; failing open")
            result = self.error_result(url, f"timed out after {deadline}s")
        except Exception as e:
            logger.error(f"Error analyzing {url}: {e}", exc_info=True)
            result = self.error_result(url, str(e) or type(e).__name__)

        self.metrics.record(result)
        return result

    async def analyze_many(self, urls: Iterable[str], timeout: Optional[float] = None) -> list[AnalysisResult]:
        """Analyze several URLs concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.analyze(u, timeout=timeout) for u in urls)))

    async def _analyze(self, url: str) -> AnalysisResult:
        normalized = normalize_url(url)
        host = _host_of(normalized)

        if self.whitelist.contains(host):
            logger.debug(f"{host} is whitelisted")
            return self.whitelist_result(normalized)

        cached = self._cache.get(normalized)
        if cached is not None:
            return cached

        signals = await self._run_layers(normalized, host)
        result = self.build_result(normalized, signals)

        ttl = self.config.malicious_url_ttl if result.is_malicious else None
        self._cache.set(normalized, result, ttl_seconds=ttl)
        return result

    async def _run_layers(self, url: str, host: str) -> list[DetectionSignal]:
        """Run all layers concurrently; a failing layer never cancels the others."""
        layers: list[tuple[DetectionLayer, Awaitable]] = [
            (DetectionLayer.SIGNATURE, self.gateway.check_all(url)),
            (DetectionLayer.HEURISTIC, self._run_heuristics(url, host)),
            (DetectionLayer.ML, self._run_ml(url)),
        ]
        results = await asyncio.gather(*(coro for _, coro in layers), return_exceptions=True)

        signals: list[DetectionSignal] = []
        for (layer, _), outcome in zip(layers, results):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.warning(f"{layer.value} layer failed for {url}: {outcome}")
                signals.append(self._layer_failure_signal(layer, outcome))
            else:
                signals.extend(outcome)
        return signals

    async def _run_heuristics(self, url: str, host: str) -> list[DetectionSignal]:
        return self.heuristics.analyze(url, host)

    async def _run_ml(self, url: str) -> list[DetectionSignal]:
        return [self.ml_scorer.analyze(url)]

    @staticmethod
    def _layer_failure_signal(layer: DetectionLayer, error: BaseException) -> DetectionSignal:
        method = LAYER_FAILURE_METHODS.get(layer, layer.value)
        return DetectionSignal(
            layer=layer,
            method=method,
            score=0,
            matched=False,
            details=f"{method} failed: {error}",
        )

    def build_result(self, url: str, signals: list[DetectionSignal]) -> AnalysisResult:
        """Combine signals into a verdict using the trust-priority rule."""
        external = [s for s in signals if s.layer == DetectionLayer.SIGNATURE and s.source is not None]
        flagged = [s for s in external if s.matched]

        if flagged:
            details = "Flagged by external threat intelligence: " + ", ".join(s.method for s in flagged)
            others = [s for s in signals if s.matched and s not in flagged]
            if others:
                details += " | Also detected by: " + ", ".join(s.method for s in others)
            return AnalysisResult(
                url=url,
                is_malicious=True,
                risk_score=100,
                risk_level=RiskLevel.CRITICAL,
                signals=tuple(signals),
                details=details,
            )

        matched = [s for s in signals if s.matched]
        score = clamp_score(sum(s.score for s in matched))
        level = self.thresholds.level_for(score)

        if matched:
            details = "Detected by: " + ", ".join(s.method for s in matched)
        else:
            details = "No threats detected"
        if external:
            details += " | External threat intelligence: Clean"

        return AnalysisResult(
            url=url,
            is_malicious=level.is_blocking,
            risk_score=score,
            risk_level=level,
            signals=tuple(signals),
            details=details,
        )

    @staticmethod
    def whitelist_result(url: str) -> AnalysisResult:
        return AnalysisResult(
            url=url,
            is_malicious=False,
            risk_score=0,
            risk_level=RiskLevel.SAFE,
            signals=(
                DetectionSignal(
                    layer=DetectionLayer.SIGNATURE,
                    method=WHITELIST_METHOD,
                    score=0,
                    matched=False,
                    details="Domain is whitelisted",
                ),
            ),
            details="Whitelisted domain",
        )

    @staticmethod
    def error_result(url: str, message: str) -> AnalysisResult:
        """Fail-open verdict for anything that went wrong."""
        return AnalysisResult(
            url=url,
            is_malicious=False,
            risk_score=0,
            risk_level=RiskLevel.SAFE,
            signals=(
                DetectionSignal(
                    layer=DetectionLayer.SIGNATURE,
                    method=ERROR_HANDLER_METHOD,
                    score=0,
                    matched=False,
                    details=f"Analysis error: {message}",
                ),
            ),
            details="Error during analysis",
        )

    # Whitelist management

    def add_to_whitelist(self, domain: str) -> str:
        entry = self.whitelist.add(domain)
        if entry:
            logger.info(f"Whitelisted {entry}")
        return entry

    def remove_from_whitelist(self, domain: str) -> bool:
        removed = self.whitelist.remove(domain)
        if removed:
            logger.info(f"Removed {canonicalize_domain(domain)} from whitelist")
        return removed

    def get_whitelist(self) -> list[str]:
        return self.whitelist.list()

    def is_whitelisted(self, url_or_domain: str) -> bool:
        return self.whitelist.contains(canonicalize_domain(url_or_domain))

    # Cache management

    def clear_cache(self) -> None:
        """Drop cached verdicts and cached intelligence answers."""
        self._cache.clear()
        self.gateway.clear_cache()

    def cache_stats(self) -> dict:
        return {"results": self._cache.stats(), "intel": self.gateway.cache_stats()}
