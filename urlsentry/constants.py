"""Centralized enums and constants for urlsentry.

Shared by the scoring layers, the gateway and the aggregator so that layer
and service identity never depend on string matching.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DetectionLayer(str, Enum):
    """Layer that produced a detection signal."""

    SIGNATURE = "signature"  # External threat intelligence (ground truth when positive)
    HEURISTIC = "heuristic"  # Rule-based lexical/structural scoring
    ML = "ml"  # Deterministic classifier proxy
    BEHAVIOR = "behavior"  # Reserved for in-page monitoring collaborators

    def __str__(self) -> str:
        return self.value


class RiskLevel(str, Enum):
    """Graded risk verdict, ordered from least to most severe."""

    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_string(cls, value: str | None) -> "RiskLevel":
        """Convert a string level to the enum, defaulting to SAFE."""
        if not value:
            return cls.SAFE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.SAFE

    @property
    def is_blocking(self) -> bool:
        """High and Critical verdicts mark a URL as malicious."""
        return self in (RiskLevel.HIGH, RiskLevel.CRITICAL)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RiskThresholds:
    """Ascending score thresholds for each risk level."""

    low: int = 25
    medium: int = 40
    high: int = 60
    critical: int = 85

    def level_for(self, score: int) -> RiskLevel:
        if score >= self.critical:
            return RiskLevel.CRITICAL
        if score >= self.high:
            return RiskLevel.HIGH
        if score >= self.medium:
            return RiskLevel.MEDIUM
        if score >= self.low:
            return RiskLevel.LOW
        return RiskLevel.SAFE

    def is_ascending(self) -> bool:
        return 0 <= self.low < self.medium < self.high < self.critical <= 100


class IntelService(str, Enum):
    """External threat-intelligence services known to the gateway."""

    SAFE_BROWSING = "safe_browsing"
    PHISHTANK = "phishtank"
    VIRUSTOTAL = "virustotal"

    @property
    def display_name(self) -> str:
        return SERVICE_DISPLAY_NAMES[self]

    def __str__(self) -> str:
        return self.value


SERVICE_DISPLAY_NAMES = {
    IntelService.SAFE_BROWSING: "Google Safe Browsing",
    IntelService.PHISHTANK: "PhishTank",
    IntelService.VIRUSTOTAL: "VirusTotal",
}

# Method names for signals produced outside the scoring layers
WHITELIST_METHOD = "Whitelist"
ERROR_HANDLER_METHOD = "Error Handler"
LOCAL_BLOCKLIST_SOURCE = "Local Blacklist"

MAX_SCORE = 100
MIN_SCORE = 0


def clamp_score(value: float) -> int:
    """Clamp a raw score into the 0..100 range."""
    return int(max(MIN_SCORE, min(MAX_SCORE, value)))
