"""Analysis statistics.

Counts verdicts so detection thresholds can be tuned from real traffic:
how many URLs were checked and blocked, which layers contributed to blocks,
and the risk-level distribution.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

from ..constants import DetectionLayer, RiskLevel
from .models import AnalysisResult

logger = logging.getLogger(__name__)

MAX_RECENT_BLOCKED = 100


@dataclass(frozen=True)
class BlockedSite:
    """A recently blocked URL."""

    url: str
    risk_score: int
    risk_level: RiskLevel
    timestamp: datetime
    reason: str

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


class AnalysisMetrics:
    """Thread-safe statistics collector owned by one analyzer."""

    def __init__(self, max_recent: int = MAX_RECENT_BLOCKED) -> None:
        self._lock = threading.Lock()
        self._max_recent = max_recent
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._total_checked = 0
        self._total_blocked = 0
        self._blocked_by_layer = {layer: 0 for layer in DetectionLayer}
        self._risk_distribution = {level: 0 for level in RiskLevel}
        self._recent_blocked: deque[BlockedSite] = deque(maxlen=self._max_recent)
        self._started = datetime.now(timezone.utc)

    def record(self, result: AnalysisResult) -> None:
        """Record one verdict."""
        with self._lock:
            self._total_checked += 1
            self._risk_distribution[result.risk_level] += 1

            if not result.is_malicious:
                return

            self._total_blocked += 1
            for signal in result.matched_signals:
                self._blocked_by_layer[signal.layer] += 1
            # Newest first
            self._recent_blocked.appendleft(BlockedSite(
                url=result.url,
                risk_score=result.risk_score,
                risk_level=result.risk_level,
                timestamp=result.timestamp,
                reason=result.details,
            ))

    @property
    def total_checked(self) -> int:
        return self._total_checked

    @property
    def total_blocked(self) -> int:
        return self._total_blocked

    def recent_blocked(self) -> list[BlockedSite]:
        with self._lock:
            return list(self._recent_blocked)

    def get_summary(self) -> dict:
        """Get a summary of all metrics."""
        with self._lock:
            uptime = datetime.now(timezone.utc) - self._started
            return {
                "uptime_seconds": int(uptime.total_seconds()),
                "total_checked": self._total_checked,
                "total_blocked": self._total_blocked,
                "blocked_by_layer": {layer.value: n for layer, n in self._blocked_by_layer.items()},
                "risk_distribution": {level.value: n for level, n in self._risk_distribution.items()},
                "recent_blocked": [site.to_dict() for site in self._recent_blocked],
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._reset_locked()
        logger.info("Analysis metrics reset")
