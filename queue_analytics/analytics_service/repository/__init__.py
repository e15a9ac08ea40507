from .history_repository import (
    InMemoryStatusHistoryRepository,
    Lookback,
    MetricSeries,
    SqlStatusHistoryRepository,
    StatusHistoryRepository,
    StatusSnapshot,
)
from .threshold_repository import (
    ConnectionThresholds,
    InMemoryThresholdResolver,
    SqlThresholdResolver,
    ThresholdResolver,
    parse_data_size,
)

__all__ = [
    "InMemoryStatusHistoryRepository",
    "Lookback",
    "MetricSeries",
    "SqlStatusHistoryRepository",
    "StatusHistoryRepository",
    "StatusSnapshot",
    "ConnectionThresholds",
    "InMemoryThresholdResolver",
    "SqlThresholdResolver",
    "ThresholdResolver",
    "parse_data_size",
]
