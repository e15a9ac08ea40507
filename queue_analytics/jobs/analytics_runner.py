"""Runner periódico de analítica de conexiones.

Recalcula la analítica de todas las conexiones activas cada
`--sleep-seconds` y deja el resultado en logs.
"""

from __future__ import annotations

import argparse
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from typing import Iterable

from queue_analytics.analytics_service.config.analytics_config import ServiceSettings
from queue_analytics.analytics_service.engine.status_analytics_engine import StatusAnalyticsEngine
from queue_analytics.analytics_service.errors import AnalyticsError
from queue_analytics.analytics_service.main import build_engine
from queue_analytics.analytics_service.status_analytics import BackpressureEta

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunnerConfig:
    """Configuración del runner."""
    sleep_seconds: float
    workers: int
    once: bool


def format_eta(eta: BackpressureEta) -> str:
    """ETA legible para logs: `420000ms` si hay predicción, si no el estado."""
    if eta.is_bounded:
        return f"{eta.millis}ms"
    return eta.status.value


def run_once(engine: StatusAnalyticsEngine, connection_ids: Iterable[str], workers: int = 1) -> dict[str, int]:
    """Refresca todas las conexiones. Devuelve contadores ok/stale/failed."""
    counts = {"ok": 0, "stale": 0, "failed": 0}

    def _one(connection_id: str):
        return connection_id, engine.refresh(connection_id)

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = [pool.submit(_one, cid) for cid in connection_ids]
        for fut in as_completed(futures):
            try:
                connection_id, analytics = fut.result()
            except AnalyticsError as e:
                counts["failed"] += 1
                logger.warning("Analítica fallida: %s", e)
                continue

            counts["stale" if analytics.stale else "ok"] += 1
            logger.info(
                "connection_id=%s bytes_eta=%s count_eta=%s next_bytes=%s next_count=%s stale=%s",
                connection_id,
                format_eta(analytics.time_to_bytes_backpressure),
                format_eta(analytics.time_to_count_backpressure),
                analytics.next_interval_bytes,
                analytics.next_interval_count,
                analytics.stale,
            )

    return counts


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    settings = ServiceSettings.from_env()

    p = argparse.ArgumentParser(description="Queue analytics runner (backpressure predictions)")
    p.add_argument("--sleep-seconds", type=float, default=60.0)
    p.add_argument("--workers", type=int, default=4)
    p.add_argument("--horizon-minutes", type=int, default=settings.engine.horizon_minutes)
    p.add_argument("--lookback-minutes", type=int, default=settings.engine.lookback_minutes)
    p.add_argument("--once", action="store_true", help="run a single iteration and exit")
    args = p.parse_args()

    cfg = RunnerConfig(
        sleep_seconds=args.sleep_seconds,
        workers=args.workers,
        once=bool(args.once),
    )
    settings = replace(
        settings,
        engine=replace(
            settings.engine,
            horizon_minutes=args.horizon_minutes,
            lookback_minutes=args.lookback_minutes,
        ),
    )

    engine = build_engine(settings)
    resolver = engine.threshold_resolver
    logger.info("Queue Analytics Runner started")
    logger.info(
        "Config: sleep=%.1fs workers=%d horizon=%dmin lookback=%dmin",
        cfg.sleep_seconds,
        cfg.workers,
        settings.engine.horizon_minutes,
        settings.engine.lookback_minutes,
    )

    with engine:
        while True:
            try:
                ids = list(resolver.list_connection_ids())
                counts = run_once(engine, ids, workers=cfg.workers)
                logger.info(
                    "Iteración completada: conexiones=%d ok=%d stale=%d failed=%d",
                    len(ids), counts["ok"], counts["stale"], counts["failed"],
                )
                if cfg.once:
                    return
                time.sleep(cfg.sleep_seconds)
            except Exception as e:
                logger.error("Error en iteración: %s", e)
                if cfg.once:
                    raise
                logger.info("Continuando con siguiente iteración...")
                time.sleep(cfg.sleep_seconds)


if __name__ == "__main__":
    main()
