"""Analyzer data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..constants import DetectionLayer, IntelService, RiskLevel, clamp_score


@dataclass(frozen=True)
class DetectionSignal:
    """One piece of evidence produced by a detection layer."""

    layer: DetectionLayer
    method: str
    score: int
    matched: bool
    details: str = ""
    source: Optional[IntelService] = None  # Set for signature-layer signals

    def __post_init__(self):
        object.__setattr__(self, "score", clamp_score(self.score))

    def to_dict(self) -> dict:
        return {
            "layer": self.layer.value,
            "method": self.method,
            "score": self.score,
            "matched": self.matched,
            "details": self.details,
            "source": self.source.value if self.source else None,
        }


@dataclass(frozen=True)
class FeatureSet:
    """Lexical, host, path, encoding and linguistic features of one URL."""

    length: int
    domain_length: int
    subdomain_count: int
    has_ip: bool
    uses_https: bool
    has_suspicious_tld: bool
    has_punycode: bool
    has_port: bool
    special_char_count: int
    digit_count: int
    vowel_count: int
    entropy: float

    # Percent-encoding split by URL region
    url_encoding_count: int
    host_encoding_count: int
    path_encoding_count: int
    query_encoding_count: int
    suspicious_encoding: bool

    phishing_keyword_count: int
    urgent_keyword_count: int
    brand_impersonation: Optional[str]

    path_length: int
    query_length: int
    path_depth: int
    path_slash_count: int

    has_consecutive_chars: bool
    is_shortener: bool
    has_hyphen_spam: bool
    has_dot_spam: bool
    dga_like: bool
    suspicious_subdomain: bool

    # Quality signals
    has_readable_params: bool
    has_random_params: bool
    has_quality_domain: bool

    @classmethod
    def benign_default(cls) -> "FeatureSet":
        """Features that score as clean; returned when a URL cannot be parsed."""
        return cls(
            length=0,
            domain_length=0,
            subdomain_count=0,
            has_ip=False,
            uses_https=True,
            has_suspicious_tld=False,
            has_punycode=False,
            has_port=False,
            special_char_count=0,
            digit_count=0,
            vowel_count=0,
            entropy=0.0,
            url_encoding_count=0,
            host_encoding_count=0,
            path_encoding_count=0,
            query_encoding_count=0,
            suspicious_encoding=False,
            phishing_keyword_count=0,
            urgent_keyword_count=0,
            brand_impersonation=None,
            path_length=0,
            query_length=0,
            path_depth=0,
            path_slash_count=0,
            has_consecutive_chars=False,
            is_shortener=False,
            has_hyphen_spam=False,
            has_dot_spam=False,
            dga_like=False,
            suspicious_subdomain=False,
            has_readable_params=True,
            has_random_params=False,
            has_quality_domain=True,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MLFeatureVector:
    """Numeric feature vector consumed by the ML proxy (flags are 0 or 1)."""

    url_length: int
    domain_length: int
    path_length: int
    query_length: int
    subdomain_count: int
    digit_ratio: float
    special_char_ratio: float
    consonant_ratio: float
    entropy: float
    has_ip: int
    uses_https: int
    has_suspicious_tld: int
    has_punycode: int
    phishing_keyword_score: int
    urgent_keyword_score: int
    path_depth: int
    has_consecutive_chars: int
    is_shortener: int
    has_readable_params: int
    has_quality_domain: int
    suspicious_encoding: int
    has_random_params: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MLPrediction:
    """Output of the ML proxy."""

    score: int
    confidence: float


@dataclass(frozen=True)
class AnalysisResult:
    """Final verdict for one URL. Never mutated after construction."""

    url: str
    is_malicious: bool
    risk_score: int
    risk_level: RiskLevel
    signals: tuple[DetectionSignal, ...] = field(default_factory=tuple)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: str = ""

    def __post_init__(self):
        object.__setattr__(self, "risk_score", clamp_score(self.risk_score))
        object.__setattr__(self, "signals", tuple(self.signals))

    @property
    def matched_signals(self) -> list[DetectionSignal]:
        return [s for s in self.signals if s.matched]

    def signals_for(self, layer: DetectionLayer) -> list[DetectionSignal]:
        return [s for s in self.signals if s.layer == layer]

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "is_malicious": self.is_malicious,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "signals": [s.to_dict() for s in self.signals],
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }

