"""Fixtures compartidas para los tests de analítica."""

from datetime import datetime, timedelta, timezone

import pytest

from queue_analytics.analytics_service.config.analytics_config import EngineConfig
from queue_analytics.analytics_service.engine.status_analytics_engine import StatusAnalyticsEngine
from queue_analytics.analytics_service.repository.history_repository import (
    InMemoryStatusHistoryRepository,
)
from queue_analytics.analytics_service.repository.threshold_repository import (
    InMemoryThresholdResolver,
)


BASE_TS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Reloj de pared controlable."""

    def __init__(self, now: datetime = BASE_TS):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeMonotonic:
    def __init__(self, value: float = 1000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def record_series(history, connection_id, points, base=BASE_TS):
    """Registra (segundos, bytes, count) relativos a `base`."""
    for seconds, queued_bytes, queued_count in points:
        history.record_snapshot(
            connection_id,
            base + timedelta(seconds=seconds),
            queued_bytes=queued_bytes,
            queued_count=queued_count,
        )


@pytest.fixture
def history() -> InMemoryStatusHistoryRepository:
    return InMemoryStatusHistoryRepository()


@pytest.fixture
def resolver() -> InMemoryThresholdResolver:
    return InMemoryThresholdResolver()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(BASE_TS + timedelta(seconds=120))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def make_engine(history, resolver, clock, monotonic):
    """Factory de motores; los cierra al terminar el test."""
    created = []

    def _make(history_repo=None, threshold_resolver=None, **cfg_kwargs):
        engine = StatusAnalyticsEngine(
            history_repo or history,
            threshold_resolver or resolver,
            config=EngineConfig(**cfg_kwargs),
            clock=clock,
            monotonic=monotonic,
        )
        created.append(engine)
        return engine

    yield _make

    for engine in created:
        engine.close()
