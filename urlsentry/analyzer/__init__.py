"""Analyzer modules for urlsentry."""

from .external_intel import IntelligenceGateway
from .features import FeatureExtractor
from .heuristics import HeuristicScorer
from .ml_proxy import ProxyMLScorer
from .models import AnalysisResult, DetectionSignal, FeatureSet, MLFeatureVector
from .threat_analyzer import InvalidURLError, ThreatAnalyzer, Whitelist

__all__ = [
    "AnalysisResult",
    "DetectionSignal",
    "FeatureExtractor",
    "FeatureSet",
    "HeuristicScorer",
    "IntelligenceGateway",
    "InvalidURLError",
    "MLFeatureVector",
    "ProxyMLScorer",
    "ThreatAnalyzer",
    "Whitelist",
]
