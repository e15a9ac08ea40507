from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, Optional
import logging
import threading

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from .config.analytics_config import ServiceSettings
from .engine.status_analytics_engine import StatusAnalyticsEngine
from .errors import AnalyticsTimeoutError, UnknownEntityError, UpstreamFailureError
from .repository.history_repository import (
    InMemoryStatusHistoryRepository,
    SqlStatusHistoryRepository,
)
from .repository.threshold_repository import InMemoryThresholdResolver, SqlThresholdResolver
from .status_analytics import BackpressureEta, ConnectionStatusAnalytics


logger = logging.getLogger(__name__)

app = FastAPI(title="Queue Analytics Service", version="0.1.0")

# Singleton
_engine: StatusAnalyticsEngine | None = None
_engine_lock = threading.Lock()


def build_engine(settings: ServiceSettings | None = None) -> StatusAnalyticsEngine:
    settings = settings or ServiceSettings.from_env()

    if settings.backend == "memory":
        history = InMemoryStatusHistoryRepository()
        resolver = InMemoryThresholdResolver()
    elif settings.backend == "sql":
        # Import aquí: crear el engine SQL abre conexión
        from queue_analytics.common.db import get_engine

        db_engine = get_engine()
        history = SqlStatusHistoryRepository(db_engine)
        resolver = SqlThresholdResolver(db_engine)
    else:
        raise ValueError(f"Unsupported backend: {settings.backend}")

    logger.info("[ANALYTICS-API] Motor creado backend=%s", settings.backend)
    return StatusAnalyticsEngine(history, resolver, config=settings.engine)


def get_analytics_engine() -> StatusAnalyticsEngine:
    """Dependencia FastAPI: motor compartido del proceso."""
    global _engine

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_engine()
    return _engine


EngineDep = Annotated[StatusAnalyticsEngine, Depends(get_analytics_engine)]


# ---------------------------------------------------------------------------
# Esquemas Pydantic
# ---------------------------------------------------------------------------


class EtaResponse(BaseModel):
    status: str
    millis: Optional[int] = None

    @classmethod
    def from_eta(cls, eta: BackpressureEta) -> "EtaResponse":
        return cls(status=eta.status.value, millis=eta.millis)


class ConnectionAnalyticsResponse(BaseModel):
    connection_id: str
    computed_at: datetime
    time_to_bytes_backpressure: EtaResponse
    time_to_count_backpressure: EtaResponse
    next_interval_bytes: Optional[int] = None
    next_interval_count: Optional[int] = None
    next_interval_at: datetime
    next_interval_percentage_use_bytes: Optional[float] = None
    next_interval_percentage_use_count: Optional[float] = None
    bytes_limit: Optional[int] = None
    count_limit: Optional[int] = None
    scores: Dict[str, Optional[Dict[str, Optional[float]]]]
    stale: bool = False

    @classmethod
    def from_analytics(cls, a: ConnectionStatusAnalytics) -> "ConnectionAnalyticsResponse":
        return cls(
            connection_id=a.connection_id,
            computed_at=a.computed_at,
            time_to_bytes_backpressure=EtaResponse.from_eta(a.time_to_bytes_backpressure),
            time_to_count_backpressure=EtaResponse.from_eta(a.time_to_count_backpressure),
            next_interval_bytes=a.next_interval_bytes,
            next_interval_count=a.next_interval_count,
            next_interval_at=a.next_interval_at,
            next_interval_percentage_use_bytes=a.next_interval_percentage_use_bytes,
            next_interval_percentage_use_count=a.next_interval_percentage_use_count,
            bytes_limit=a.bytes_limit,
            count_limit=a.count_limit,
            scores={m: (dict(s) if s is not None else None) for m, s in a.scores.items()},
            stale=a.stale,
        )


class BackpressureResponse(BaseModel):
    connection_id: str
    queued_bytes: EtaResponse
    queued_count: EtaResponse
    stale: bool = False


class NextIntervalResponse(BaseModel):
    connection_id: str
    target_timestamp: datetime
    queued_bytes: Optional[int] = None
    queued_count: Optional[int] = None
    stale: bool = False


def _load(engine: StatusAnalyticsEngine, connection_id: str) -> ConnectionStatusAnalytics:
    try:
        return engine.get_status_analytics(connection_id)
    except UnknownEntityError:
        raise HTTPException(status_code=404, detail="connection_id not found")
    except AnalyticsTimeoutError:
        logger.warning("[ANALYTICS-API] connection_id=%s timeout de histórico", connection_id)
        raise HTTPException(status_code=504, detail="history repository timeout")
    except UpstreamFailureError:
        logger.warning("[ANALYTICS-API] connection_id=%s fallo de colaborador externo", connection_id)
        raise HTTPException(status_code=503, detail="analytics temporarily unavailable")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/analytics/stats")
def analytics_stats(engine: EngineDep) -> dict:
    return engine.stats


@app.get("/analytics/connections/{connection_id}", response_model=ConnectionAnalyticsResponse)
def connection_analytics(connection_id: str, engine: EngineDep) -> ConnectionAnalyticsResponse:
    return ConnectionAnalyticsResponse.from_analytics(_load(engine, connection_id))


@app.get("/analytics/connections/{connection_id}/backpressure", response_model=BackpressureResponse)
def connection_backpressure(connection_id: str, engine: EngineDep) -> BackpressureResponse:
    a = _load(engine, connection_id)
    return BackpressureResponse(
        connection_id=connection_id,
        queued_bytes=EtaResponse.from_eta(a.time_to_bytes_backpressure),
        queued_count=EtaResponse.from_eta(a.time_to_count_backpressure),
        stale=a.stale,
    )


@app.get("/analytics/connections/{connection_id}/next-interval", response_model=NextIntervalResponse)
def connection_next_interval(connection_id: str, engine: EngineDep) -> NextIntervalResponse:
    a = _load(engine, connection_id)
    return NextIntervalResponse(
        connection_id=connection_id,
        target_timestamp=a.next_interval_at,
        queued_bytes=a.next_interval_bytes,
        queued_count=a.next_interval_count,
        stale=a.stale,
    )


@app.delete("/analytics/connections/{connection_id}/cache")
def invalidate_connection(connection_id: str, engine: EngineDep) -> dict[str, bool]:
    logger.info("[ANALYTICS-API] Invalidar caché connection_id=%s", connection_id)
    return {"invalidated": engine.invalidate(connection_id)}
