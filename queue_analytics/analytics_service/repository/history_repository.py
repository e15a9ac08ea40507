from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..status_analytics import METRIC_QUEUED_BYTES, METRIC_QUEUED_COUNT


logger = logging.getLogger(__name__)

# Métrica -> columna de dbo.connection_status_snapshots
_METRIC_COLUMNS = {
    METRIC_QUEUED_BYTES: "queued_bytes",
    METRIC_QUEUED_COUNT: "queued_count",
}


@dataclass(frozen=True)
class StatusSnapshot:
    connection_id: str
    timestamp: datetime
    queued_bytes: int
    queued_count: int


@dataclass(frozen=True)
class Lookback:
    """Ventana de histórico: desde `since` y como mucho `max_points` puntos."""

    since: datetime
    max_points: int

    def __post_init__(self) -> None:
        # TOP (0) en SQL Server no devuelve filas: no hay modo "sin límite"
        if self.max_points <= 0:
            raise ValueError(f"max_points must be positive, got {self.max_points}")


@dataclass(frozen=True)
class MetricSeries:
    connection_id: str
    metric: str
    timestamps: list[datetime]
    values: list[float]

    def __len__(self) -> int:
        return len(self.timestamps)

    @classmethod
    def empty(cls, connection_id: str, metric: str) -> "MetricSeries":
        return cls(connection_id=connection_id, metric=metric, timestamps=[], values=[])


class StatusHistoryRepository(Protocol):
    def fetch_history(self, connection_id: str, metric: str, lookback: Lookback) -> MetricSeries:
        """Serie ordenada por timestamp ascendente (los puntos más recientes)."""
        ...


def as_utc(ts: datetime) -> datetime:
    # El histórico SQL devuelve timestamps naive en UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _check_metric(metric: str) -> str:
    column = _METRIC_COLUMNS.get(metric)
    if column is None:
        raise ValueError(f"Unsupported metric: {metric}")
    return column


class InMemoryStatusHistoryRepository:
    """Histórico en memoria, para tests y ejecución local."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, List[StatusSnapshot]] = {}
        self._lock = threading.Lock()

    def record_snapshot(
        self,
        connection_id: str,
        timestamp: datetime,
        queued_bytes: int,
        queued_count: int,
    ) -> StatusSnapshot:
        snap = StatusSnapshot(
            connection_id=connection_id,
            timestamp=timestamp,
            queued_bytes=int(queued_bytes),
            queued_count=int(queued_count),
        )
        with self._lock:
            buf = self._snapshots.setdefault(connection_id, [])
            buf.append(snap)
            if len(buf) > 1 and buf[-2].timestamp > timestamp:
                buf.sort(key=lambda s: s.timestamp)
        return snap

    def fetch_history(self, connection_id: str, metric: str, lookback: Lookback) -> MetricSeries:
        column = _check_metric(metric)
        since = as_utc(lookback.since)
        with self._lock:
            snaps = [s for s in self._snapshots.get(connection_id, ()) if as_utc(s.timestamp) >= since]

        snaps = snaps[-lookback.max_points:]

        return MetricSeries(
            connection_id=connection_id,
            metric=metric,
            timestamps=[s.timestamp for s in snaps],
            values=[float(getattr(s, column)) for s in snaps],
        )


class SqlStatusHistoryRepository:
    """Histórico de estado de conexiones en SQL Server."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def fetch_history(self, connection_id: str, metric: str, lookback: Lookback) -> MetricSeries:
        column = _check_metric(metric)

        # Los más recientes primero para que TOP corte por el lado antiguo
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"""
                    SELECT TOP (:limit) snapshot_ts, {column} AS v
                    FROM dbo.connection_status_snapshots
                    WHERE connection_id = :connection_id
                      AND snapshot_ts >= :since
                    ORDER BY snapshot_ts DESC
                    """
                ),
                {
                    "connection_id": connection_id,
                    "since": lookback.since.replace(tzinfo=None),
                    "limit": lookback.max_points,
                },
            ).fetchall()

        ts: list[datetime] = []
        vals: list[float] = []
        for t, v in reversed(rows):
            if v is None:
                continue
            ts.append(t)
            vals.append(float(v))

        logger.debug(
            "[HISTORY] connection_id=%s metric=%s puntos=%d", connection_id, metric, len(ts)
        )
        return MetricSeries(connection_id=connection_id, metric=metric, timestamps=ts, values=vals)
