"""Rule-based URL scoring."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import Config
from ..constants import DetectionLayer, clamp_score
from ..utils.domains import host_matches
from .features import FeatureExtractor
from .models import DetectionSignal, FeatureSet

logger = logging.getLogger(__name__)


def _signal(method: str, score: int, details: str) -> DetectionSignal:
    return DetectionSignal(
        layer=DetectionLayer.HEURISTIC,
        method=method,
        score=score,
        matched=True,
        details=details,
    )


class HeuristicScorer:
    """
    Scores URL features with independent lexical/structural rules.

    Every rule is evaluated; each contributes at most one matched signal.
    Length and entropy rules are relaxed for trusted infrastructure hosts
    (large platforms whose URLs are legitimately long and random-looking).
    """

    def __init__(self, config: Optional[Config] = None, extractor: Optional[FeatureExtractor] = None):
        self.config = config or Config()
        self.extractor = extractor or FeatureExtractor(self.config)

    def is_trusted_infra(self, host: str) -> bool:
        return host_matches(host, self.config.trusted_infra_domains)

    def analyze(self, url: str, host: str) -> list[DetectionSignal]:
        """Extract features for url and score them."""
        features = self.extractor.extract(url)
        return self.score(features, host, self.is_trusted_infra(host))

    def score(self, features: FeatureSet, host: str, is_trusted_infra: bool) -> list[DetectionSignal]:
        host = (host or "").lower()
        signals: list[DetectionSignal] = []

        signals.extend(self._check_host(features))
        signals.extend(self._check_length(features, is_trusted_infra))
        signals.extend(self._check_keywords(features, host, is_trusted_infra))
        signals.extend(self._check_structure(features, is_trusted_infra))
        signals.extend(self._check_generated_names(features))

        return signals

    @staticmethod
    def total(signals: list[DetectionSignal]) -> int:
        """Sum of matched scores, capped at 100 (informational)."""
        return clamp_score(sum(s.score for s in signals if s.matched))

    def _check_host(self, features: FeatureSet) -> list[DetectionSignal]:
        w = self.config.weight
        signals = []

        if features.has_ip:
            signals.append(_signal(
                "IP Address Detection", w("ip_url"),
                "URL uses IP address instead of domain name",
            ))
        if features.has_suspicious_tld:
            signals.append(_signal(
                "Suspicious TLD", w("suspicious_tld"),
                "Domain uses a TLD commonly associated with phishing",
            ))
        if features.has_punycode:
            signals.append(_signal(
                "Punycode/IDN Detection", w("punycode"),
                "URL contains internationalized domain (potential homograph attack)",
            ))
        if features.subdomain_count > self.config.max_subdomains:
            signals.append(_signal(
                "Excessive Subdomains", w("excessive_subdomain"),
                f"URL has {features.subdomain_count} subdomains (suspicious)",
            ))
        if features.suspicious_encoding:
            signals.append(_signal(
                "Suspicious URL Encoding", w("url_encoding"),
                "URL encoding found in hostname or excessive in path (obfuscation attempt)",
            ))
        if features.brand_impersonation:
            signals.append(_signal(
                "Brand Impersonation", w("brand_impersonation"),
                f"Potential impersonation of {features.brand_impersonation}",
            ))
        return signals

    def _check_length(self, features: FeatureSet, is_trusted_infra: bool) -> list[DetectionSignal]:
        if is_trusted_infra:
            return []

        cfg = self.config
        # Readable params on a clean domain: long but well-formed
        structured = features.has_readable_params and features.has_quality_domain
        threshold = cfg.url_length_extreme if structured else cfg.url_length_very_suspicious

        if features.length > threshold:
            return [_signal(
                "Excessive URL Length", cfg.weight("excessive_url_length"),
                f"URL length ({features.length}) is extremely suspicious",
            )]
        if features.length > cfg.url_length_suspicious and not structured:
            return [_signal(
                "Long URL", cfg.weight("long_url"),
                f"URL length ({features.length}) is suspicious",
            )]
        return []

    def _check_keywords(self, features: FeatureSet, host: str, is_trusted_infra: bool) -> list[DetectionSignal]:
        w = self.config.weight
        signals = []

        # Paths on trusted platforms routinely contain "login"/"account"
        if is_trusted_infra:
            count = self.extractor.count_keywords(host, self.config.phishing_keywords)
            suffix = " in hostname"
        else:
            count = features.phishing_keyword_count
            suffix = ""
        if count > 0:
            signals.append(_signal(
                "Phishing Keywords", w("suspicious_keywords") * count,
                f"Contains {count} phishing-related keyword(s){suffix}",
            ))

        if not features.uses_https and features.phishing_keyword_count > 0:
            signals.append(_signal(
                "No HTTPS on Sensitive Page", w("no_https"),
                "Sensitive page without HTTPS encryption",
            ))

        if features.urgent_keyword_count > 0:
            signals.append(_signal(
                "Social Engineering Language", w("urgent_keywords") * features.urgent_keyword_count,
                f"Contains {features.urgent_keyword_count} urgent/pressure keyword(s)",
            ))
        return signals

    def _check_structure(self, features: FeatureSet, is_trusted_infra: bool) -> list[DetectionSignal]:
        w = self.config.weight
        signals = []

        if features.has_consecutive_chars:
            signals.append(_signal(
                "Character Pattern Anomaly", w("consecutive_chars"),
                "Domain contains suspicious repeated character patterns",
            ))
        if features.is_shortener:
            signals.append(_signal(
                "URL Shortener Detected", w("url_shortener"),
                "URL uses a shortening service (destination unknown)",
            ))
        if features.has_hyphen_spam:
            signals.append(_signal(
                "Hyphen Spam", w("hyphen_spam"),
                "Domain contains excessive hyphens",
            ))
        if features.has_dot_spam:
            signals.append(_signal(
                "Subdomain Spam", w("dot_spam"),
                "Domain has excessive subdomain levels",
            ))
        if features.path_depth > self.config.max_path_depth:
            signals.append(_signal(
                "Excessive Path Depth", w("path_depth"),
                f"Path has {features.path_depth} levels (suspicious structure)",
            ))
        if not is_trusted_infra and features.entropy > self.config.entropy_threshold:
            signals.append(_signal(
                "High Domain Entropy", w("high_entropy"),
                f"Domain has high entropy ({features.entropy:.2f}), possibly randomly generated",
            ))
        return signals

    def _check_generated_names(self, features: FeatureSet) -> list[DetectionSignal]:
        w = self.config.weight
        signals = []

        if features.dga_like:
            signals.append(_signal(
                "DGA / Random Domain", w("dga_domain"),
                "Domain name pattern appears randomly generated or algorithmic",
            ))
        if features.suspicious_subdomain:
            signals.append(_signal(
                "Suspicious Subdomain", w("suspicious_subdomain"),
                "Subdomain appears to be a generated hash or ID",
            ))
        return signals
