"""Predictive analytics over CAPA and incident history."""

from qualiq.insights.analyzer import SAMPLE_INCIDENTS, CapaPatternAnalyzer, build_user_prompt
from qualiq.insights.models import PatternDetection, PredictiveInsight

__all__ = [
    "SAMPLE_INCIDENTS",
    "CapaPatternAnalyzer",
    "PatternDetection",
    "PredictiveInsight",
    "build_user_prompt",
]
