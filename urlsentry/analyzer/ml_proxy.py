"""
Deterministic stand-in for a trained URL classifier.

Weighted penalties over the numeric feature vector, minus a legitimacy bonus
for well-formed URLs. The interface (vector in, score/confidence out) is the
one a real model would implement.
"""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Optional

from ..config import Config
from ..constants import DetectionLayer
from .features import FeatureExtractor
from .models import DetectionSignal, MLFeatureVector, MLPrediction

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.7


def _percent(confidence: float) -> int:
    return int(math.floor(confidence * 100 + 0.5))


class ProxyMLScorer:
    """Scores URLs from their MLFeatureVector."""

    def __init__(self, config: Optional[Config] = None, extractor: Optional[FeatureExtractor] = None):
        self.config = config or Config()
        self.extractor = extractor or FeatureExtractor(self.config)

    def predict(self, v: MLFeatureVector) -> MLPrediction:
        score = 0
        confidence = BASE_CONFIDENCE

        # Legitimacy indicators
        bonus = 0
        if v.has_readable_params:
            bonus += 20
            confidence += 0.08
        if v.has_quality_domain:
            bonus += 15
            confidence += 0.05
        if v.uses_https and v.has_quality_domain:
            bonus += 8

        if v.has_ip:
            score += 35
            confidence += 0.15
        if v.has_punycode:
            score += 30
            confidence += 0.1
        if v.has_suspicious_tld:
            score += 28
            confidence += 0.08
        if v.suspicious_encoding:
            score += 30
            confidence += 0.1
        if v.has_random_params:
            score += 22
            confidence += 0.08

        # Structured URLs are allowed to be long
        length_factor = 0.5 if v.has_readable_params else 1.0
        if v.url_length > 300:
            score += math.floor(25 * length_factor)
        elif v.url_length > 200:
            score += math.floor(15 * length_factor)
        elif v.url_length > 120:
            score += math.floor(8 * length_factor)

        if v.domain_length > 40:
            score += 18
        elif v.domain_length > 25:
            score += 10

        if v.subdomain_count > 5:
            score += 30
            confidence += 0.1
        elif v.subdomain_count > 3:
            score += 18
        elif v.subdomain_count > 2:
            score += 10

        if v.path_depth > 10:
            score += 15
        elif v.path_depth > 7:
            score += 8

        if v.digit_ratio > 0.4:
            score += 20
            confidence += 0.05
        elif v.digit_ratio > 0.25:
            score += 12

        if v.special_char_ratio > 0.35:
            score += 18
        elif v.special_char_ratio > 0.2:
            score += 10

        if v.consonant_ratio > 0.7:
            score += 12

        if v.entropy > 4.8:
            score += 25
            confidence += 0.1
        elif v.entropy > 4.2:
            score += 15
        elif v.entropy > 3.8:
            score += 8

        if v.has_consecutive_chars:
            score += 12

        score += min(v.phishing_keyword_score, 35)
        score += min(v.urgent_keyword_score, 40)
        if v.urgent_keyword_score > 20:
            confidence += 0.15

        # Destination unknown, so the model is less sure either way
        if v.is_shortener:
            score += 12
            confidence -= 0.1

        if not v.uses_https:
            score += 10

        score = max(0, score - bonus)
        score = min(100, max(0, score))
        confidence = min(1.0, max(0.1, confidence))

        return MLPrediction(score=int(score), confidence=confidence)

    def score(self, vector: MLFeatureVector) -> DetectionSignal:
        """Turn a prediction into an ML-layer signal."""
        prediction = self.predict(vector)
        pct = _percent(prediction.confidence)
        return DetectionSignal(
            layer=DetectionLayer.ML,
            method=f"ML Model ({pct}% confidence)",
            score=prediction.score,
            matched=prediction.score > self.config.ml_match_threshold,
            details=f"ML prediction: {prediction.score}/100 (confidence: {pct}%)",
        )

    def analyze(self, url: str) -> DetectionSignal:
        return self.score(self.extractor.extract_vector(url))

    def export_features(self, url: str, label: bool) -> str:
        """Serialize the feature vector of url as one labelled JSON line."""
        vector = self.extractor.extract_vector(url)
        return json.dumps({
            "url": url,
            "label": bool(label),
            "features": vector.to_dict(),
            "timestamp": int(time.time() * 1000),
        })
