from .cache import AnalyticsCache, CacheEntry, MetricModelState
from .status_analytics_engine import StatusAnalyticsEngine

__all__ = ["AnalyticsCache", "CacheEntry", "MetricModelState", "StatusAnalyticsEngine"]
