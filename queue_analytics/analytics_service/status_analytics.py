from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


METRIC_QUEUED_BYTES = "queued_bytes"
METRIC_QUEUED_COUNT = "queued_count"
METRICS = (METRIC_QUEUED_BYTES, METRIC_QUEUED_COUNT)


class EtaStatus(str, Enum):
    """Estado de una predicción de tiempo hasta backpressure."""
    PREDICTED = "predicted"
    NEVER = "never"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class BackpressureEta:
    """Tiempo hasta backpressure.

    Solo `PREDICTED` lleva milisegundos; `NEVER` significa que con la
    tendencia actual el límite no se alcanza.
    """

    status: EtaStatus
    millis: Optional[int] = None

    def __post_init__(self) -> None:
        if self.status == EtaStatus.PREDICTED:
            if self.millis is None or self.millis <= 0:
                raise ValueError("a predicted eta needs a positive millis value")
        elif self.millis is not None:
            raise ValueError(f"eta with status {self.status.value} cannot carry millis")

    @classmethod
    def in_millis(cls, millis: float) -> "BackpressureEta":
        return cls(EtaStatus.PREDICTED, max(1, int(round(millis))))

    @classmethod
    def never(cls) -> "BackpressureEta":
        return cls(EtaStatus.NEVER)

    @classmethod
    def insufficient_data(cls) -> "BackpressureEta":
        return cls(EtaStatus.INSUFFICIENT_DATA)

    @property
    def is_bounded(self) -> bool:
        return self.status == EtaStatus.PREDICTED


def _score_value(value: float) -> Optional[float]:
    # NaN (p.ej. MSE con n = 2) se expone como ausente
    return value if math.isfinite(value) else None


@dataclass(frozen=True)
class ConnectionStatusAnalytics:
    """Snapshot inmutable de la analítica de una conexión.

    Se crea en cada recálculo y lo sustituye el siguiente; nunca se modifica.
    """

    connection_id: str
    computed_at: datetime
    time_to_bytes_backpressure: BackpressureEta
    time_to_count_backpressure: BackpressureEta
    next_interval_bytes: Optional[int]
    next_interval_count: Optional[int]
    next_interval_at: datetime
    bytes_limit: Optional[int] = None
    count_limit: Optional[int] = None
    next_interval_percentage_use_bytes: Optional[float] = None
    next_interval_percentage_use_count: Optional[float] = None
    # metric -> {r_squared, adjusted_r_squared, rmse, ...} o None sin ajuste
    scores: Mapping[str, Optional[Mapping[str, Optional[float]]]] = field(default_factory=dict)
    stale: bool = False

    def __post_init__(self) -> None:
        frozen_scores = {
            metric: (MappingProxyType(dict(values)) if values is not None else None)
            for metric, values in self.scores.items()
        }
        object.__setattr__(self, "scores", MappingProxyType(frozen_scores))

    @property
    def time_to_bytes_backpressure_millis(self) -> Optional[int]:
        return self.time_to_bytes_backpressure.millis

    @property
    def time_to_count_backpressure_millis(self) -> Optional[int]:
        return self.time_to_count_backpressure.millis

    @property
    def insufficient_data(self) -> tuple[str, ...]:
        """Métricas sin datos suficientes para ajustar un modelo."""
        out = []
        if self.time_to_bytes_backpressure.status == EtaStatus.INSUFFICIENT_DATA:
            out.append(METRIC_QUEUED_BYTES)
        if self.time_to_count_backpressure.status == EtaStatus.INSUFFICIENT_DATA:
            out.append(METRIC_QUEUED_COUNT)
        return tuple(out)

    def get_scores(self, metric: str) -> Optional[Mapping[str, Optional[float]]]:
        return self.scores.get(metric)

    def as_stale(self) -> "ConnectionStatusAnalytics":
        return dataclasses.replace(self, stale=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "computed_at": self.computed_at.isoformat(),
            "time_to_bytes_backpressure": {
                "status": self.time_to_bytes_backpressure.status.value,
                "millis": self.time_to_bytes_backpressure.millis,
            },
            "time_to_count_backpressure": {
                "status": self.time_to_count_backpressure.status.value,
                "millis": self.time_to_count_backpressure.millis,
            },
            "next_interval_bytes": self.next_interval_bytes,
            "next_interval_count": self.next_interval_count,
            "next_interval_at": self.next_interval_at.isoformat(),
            "next_interval_percentage_use_bytes": self.next_interval_percentage_use_bytes,
            "next_interval_percentage_use_count": self.next_interval_percentage_use_count,
            "bytes_limit": self.bytes_limit,
            "count_limit": self.count_limit,
            "scores": {
                metric: (dict(values) if values is not None else None)
                for metric, values in self.scores.items()
            },
            "stale": self.stale,
        }


def build_scores(fit) -> Optional[dict[str, Optional[float]]]:
    """Scores de diagnóstico expuestos a partir de un FitResult."""
    if fit is None:
        return None
    return {
        "r_squared": _score_value(fit.r_squared),
        "adjusted_r_squared": _score_value(fit.adjusted_r_squared),
        "rmse": _score_value(fit.rmse),
        "residual_sum_squares": _score_value(fit.residual_sum_squares),
        "mean_square_error": _score_value(fit.mean_square_error),
    }
