"""Analytics helpers for tutorial progress reporting."""

from .metrics import MetricsEvent, MetricsExporter
from .tutorial import ProgressRecord, TutorialAnalytics

__all__ = ["MetricsEvent", "MetricsExporter", "ProgressRecord", "TutorialAnalytics"]
