"""Motor de analítica de estado de conexiones.

Para cada conexión ajusta dos modelos bivariantes (tiempo -> bytes en cola,
tiempo -> objetos en cola) sobre el histórico y predice:

- ms hasta que la cola alcance su límite de backpressure;
- tamaño de la cola en el siguiente intervalo (`horizon_minutes`).

Política de concurrencia: si dos hilos piden la misma conexión con el
resultado caducado, el segundo espera al recálculo del primero y devuelve
ese resultado; nunca se ajustan dos veces en paralelo los mismos modelos.
"""

from __future__ import annotations

import copy
import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from ..config.analytics_config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..errors import (
    AnalyticsTimeoutError,
    DegenerateFitError,
    InsufficientDataError,
    NoHistoryDataError,
    UnknownEntityError,
    UnknownModelKindError,
    UpstreamFailureError,
)
from ..models.registry import DEFAULT_MODEL_REGISTRY, ModelRegistry
from ..repository.history_repository import (
    Lookback,
    MetricSeries,
    StatusHistoryRepository,
    as_utc,
)
from ..repository.threshold_repository import ConnectionThresholds, ThresholdResolver
from ..status_analytics import (
    METRIC_QUEUED_BYTES,
    METRIC_QUEUED_COUNT,
    METRICS,
    BackpressureEta,
    ConnectionStatusAnalytics,
    build_scores,
)
from .cache import AnalyticsCache, CacheEntry, MetricModelState


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_millis(origin: datetime, ts: datetime) -> float:
    return (ts - origin).total_seconds() * 1000.0


class StatusAnalyticsEngine:
    def __init__(
        self,
        history_repository: StatusHistoryRepository,
        threshold_resolver: ThresholdResolver,
        config: EngineConfig | None = None,
        registry: ModelRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._history = history_repository
        self._thresholds = threshold_resolver
        self._cfg = config or DEFAULT_ENGINE_CONFIG
        self._registry = registry or DEFAULT_MODEL_REGISTRY
        self._clock = clock or _utc_now
        self._monotonic = monotonic

        if self._cfg.model.model_type not in self._registry:
            raise UnknownModelKindError(self._cfg.model.model_type, self._registry.kinds())

        self._cache = AnalyticsCache(max_entries=self._cfg.max_cached_connections)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, self._cfg.fetch_workers),
            thread_name_prefix="analytics-history",
        )

        self._stats_lock = threading.Lock()
        self._stats = {
            "cache_hits": 0,
            "computations": 0,
            "stale_fallbacks": 0,
            "failures": 0,
        }

        logger.info(
            "StatusAnalyticsEngine initialized: model=%s clear_on_learn=%s lookback=%dmin/%d pts "
            "horizon=%dmin refresh=%.1fs timeout=%.1fs",
            self._cfg.model.model_type,
            self._cfg.model.clear_on_learn,
            self._cfg.lookback_minutes,
            self._cfg.lookback_points,
            self._cfg.horizon_minutes,
            self._cfg.refresh_interval_seconds,
            self._cfg.fetch_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._cfg

    @property
    def threshold_resolver(self) -> ThresholdResolver:
        return self._thresholds

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            out = dict(self._stats)
        out["cached_connections"] = len(self._cache)
        out["computing_connections"] = len(self._cache.computing_ids())
        return out

    def get_status_analytics(self, connection_id: str) -> ConnectionStatusAnalytics:
        """Analítica de la conexión, desde caché si sigue vigente.

        Raises:
            UnknownEntityError: la conexión no existe.
            UpstreamFailureError: fallo del histórico/umbrales sin valor previo en caché.
        """
        entry = self._cache.get(connection_id)
        if entry is not None and self._is_fresh(entry):
            self._inc("cache_hits")
            return entry.analytics

        with self._cache.computing(connection_id):
            # Otro hilo pudo terminar el recálculo mientras esperábamos
            entry = self._cache.get(connection_id)
            if entry is not None and self._is_fresh(entry):
                self._inc("cache_hits")
                return entry.analytics
            return self._recompute(connection_id, entry)

    def refresh(self, connection_id: str) -> ConnectionStatusAnalytics:
        """Fuerza el recálculo aunque el valor en caché siga vigente."""
        with self._cache.computing(connection_id):
            return self._recompute(connection_id, self._cache.get(connection_id))

    def get_time_to_bytes_backpressure_millis(self, connection_id: str) -> BackpressureEta:
        return self.get_status_analytics(connection_id).time_to_bytes_backpressure

    def get_time_to_count_backpressure_millis(self, connection_id: str) -> BackpressureEta:
        return self.get_status_analytics(connection_id).time_to_count_backpressure

    def get_next_interval_bytes(self, connection_id: str) -> Optional[int]:
        return self.get_status_analytics(connection_id).next_interval_bytes

    def get_next_interval_count(self, connection_id: str) -> Optional[int]:
        return self.get_status_analytics(connection_id).next_interval_count

    def invalidate(self, connection_id: str) -> bool:
        return self._cache.invalidate(connection_id)

    def invalidate_all(self) -> None:
        self._cache.clear()

    def cached_ids(self) -> list[str]:
        return self._cache.ids()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "StatusAnalyticsEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Recálculo
    # ------------------------------------------------------------------

    def _is_fresh(self, entry: CacheEntry) -> bool:
        age = self._monotonic() - entry.computed_monotonic
        return age < self._cfg.refresh_interval_seconds

    def _inc(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def _recompute(self, connection_id: str, previous: CacheEntry | None) -> ConnectionStatusAnalytics:
        try:
            entry = self._compute(connection_id, previous)
        except UnknownEntityError:
            self._inc("failures")
            self._cache.invalidate(connection_id)
            raise
        except UpstreamFailureError as e:
            self._inc("failures")
            if previous is None:
                raise
            self._inc("stale_fallbacks")
            logger.warning(
                "[ANALYTICS] connection_id=%s recálculo fallido (%s), se devuelve el valor anterior",
                connection_id,
                e,
            )
            return previous.analytics.as_stale()

        self._cache.put(connection_id, entry)
        self._inc("computations")
        return entry.analytics

    def _compute(self, connection_id: str, previous: CacheEntry | None) -> CacheEntry:
        thresholds = self._resolve_thresholds(connection_id)

        now = as_utc(self._clock())
        lookback = Lookback(
            since=now - timedelta(minutes=self._cfg.lookback_minutes),
            max_points=self._cfg.lookback_points,
        )
        series_by_metric = self._fetch_history(connection_id, lookback)

        # Se trabaja sobre copias: los modelos vivos no cambian hasta el swap
        states: Dict[str, MetricModelState] = {}
        for metric in METRICS:
            prev_state = previous.models.get(metric) if previous is not None else None
            try:
                states[metric] = self._train(series_by_metric[metric], prev_state)
            except InsufficientDataError as e:
                logger.debug("[ANALYTICS] connection_id=%s %s", connection_id, e)

        target = now + timedelta(minutes=self._cfg.horizon_minutes)
        bytes_eta, next_bytes, pct_bytes = self._predict(
            states.get(METRIC_QUEUED_BYTES), thresholds.bytes_limit, now, target
        )
        count_eta, next_count, pct_count = self._predict(
            states.get(METRIC_QUEUED_COUNT), thresholds.count_limit, now, target
        )

        analytics = ConnectionStatusAnalytics(
            connection_id=connection_id,
            computed_at=now,
            time_to_bytes_backpressure=bytes_eta,
            time_to_count_backpressure=count_eta,
            next_interval_bytes=next_bytes,
            next_interval_count=next_count,
            next_interval_at=target,
            bytes_limit=thresholds.bytes_limit,
            count_limit=thresholds.count_limit,
            next_interval_percentage_use_bytes=pct_bytes,
            next_interval_percentage_use_count=pct_count,
            scores={
                metric: build_scores(states[metric].model.fit) if metric in states else None
                for metric in METRICS
            },
        )

        logger.debug(
            "[ANALYTICS] connection_id=%s bytes_eta=%s count_eta=%s next_bytes=%s next_count=%s",
            connection_id,
            bytes_eta,
            count_eta,
            next_bytes,
            next_count,
        )

        return CacheEntry(
            analytics=analytics,
            computed_monotonic=self._monotonic(),
            models=states,
        )

    def _resolve_thresholds(self, connection_id: str) -> ConnectionThresholds:
        try:
            return self._thresholds.resolve_thresholds(connection_id)
        except UnknownEntityError:
            raise
        except Exception as e:
            raise UpstreamFailureError(connection_id, f"threshold lookup failed: {e}") from e

    def _fetch_history(self, connection_id: str, lookback: Lookback) -> Dict[str, MetricSeries]:
        futures = {
            metric: self._executor.submit(self._history.fetch_history, connection_id, metric, lookback)
            for metric in METRICS
        }
        _, pending = wait(futures.values(), timeout=self._cfg.fetch_timeout_seconds)
        if pending:
            for fut in pending:
                fut.cancel()
            raise AnalyticsTimeoutError(connection_id, self._cfg.fetch_timeout_seconds)

        out: Dict[str, MetricSeries] = {}
        for metric, fut in futures.items():
            try:
                out[metric] = fut.result()
            except NoHistoryDataError:
                out[metric] = MetricSeries.empty(connection_id, metric)
            except UnknownEntityError:
                raise
            except Exception as e:
                raise UpstreamFailureError(
                    connection_id, f"history fetch failed for {metric}: {e}"
                ) from e
        return out

    def _train(self, series: MetricSeries, prev: MetricModelState | None) -> MetricModelState:
        """Modelo ajustado para la serie, partiendo del estado anterior si admite aprendizaje online.

        Raises:
            InsufficientDataError: sin modelo previo y menos de `min_points` puntos.
        """
        timestamps = [as_utc(ts) for ts in series.timestamps]
        values = series.values

        incremental = (
            prev is not None
            and prev.model.supports_online_learning()
            and not prev.model.clear_on_learn
        )

        if incremental:
            new_points = [(ts, v) for ts, v in zip(timestamps, values) if ts > prev.last_timestamp]
            if not new_points:
                return prev
            model = copy.deepcopy(prev.model)
            origin = prev.origin
            timestamps = [ts for ts, _ in new_points]
            values = [v for _, v in new_points]
        else:
            min_points = max(2, self._cfg.min_points)
            if len(timestamps) < min_points:
                raise InsufficientDataError(series.metric, len(timestamps), min_points)
            model = self._registry.create(self._cfg.model.model_type, self._cfg.model)
            origin = timestamps[0]

        model.learn([_elapsed_millis(origin, ts) for ts in timestamps], values)
        if model.fit is None:
            raise InsufficientDataError(series.metric, model.n_observations, 2)
        return MetricModelState(model=model, origin=origin, last_timestamp=timestamps[-1])

    def _predict(
        self,
        state: MetricModelState | None,
        limit: Optional[int],
        now: datetime,
        target: datetime,
    ) -> tuple[BackpressureEta, Optional[int], Optional[float]]:
        if state is None or state.model.fit is None:
            return BackpressureEta.insufficient_data(), None, None

        model = state.model
        eta = self._time_to_backpressure(state, limit, now)

        predicted = model.predict_y(_elapsed_millis(state.origin, target))
        if not math.isfinite(predicted):
            return eta, None, None

        # Una cola no puede tener tamaño negativo
        next_value = max(0, int(round(predicted)))
        pct = (next_value / limit) * 100.0 if limit else None
        return eta, next_value, pct

    def _time_to_backpressure(
        self,
        state: MetricModelState,
        limit: Optional[int],
        now: datetime,
    ) -> BackpressureEta:
        if not limit or limit <= 0:
            return BackpressureEta.never()

        fit = state.model.fit
        if fit.degenerate or not fit.slope > 0:
            return BackpressureEta.never()

        try:
            crossing = state.model.predict_x(float(limit))
        except DegenerateFitError:
            return BackpressureEta.never()

        remaining = crossing - _elapsed_millis(state.origin, now)
        if not math.isfinite(remaining) or remaining <= 0:
            return BackpressureEta.never()
        return BackpressureEta.in_millis(remaining)
