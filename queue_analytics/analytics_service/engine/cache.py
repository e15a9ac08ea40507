"""Caché por conexión de la analítica calculada.

- Las lecturas (`get`) no toman lock: cada entrada es inmutable y se
  sustituye entera.
- `_lock` solo protege la sustitución/expulsión de entradas y la tabla de
  recálculos en curso.
- `computing(id)` serializa los recálculos de una misma conexión. El lock
  de una conexión vive mientras haya algún hilo dentro o esperando, y se
  borra al salir el último, con independencia de que la conexión esté o
  no en caché.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, Mapping, Optional

from ..models.bivariate_model import BivariateStatusAnalyticsModel
from ..status_analytics import ConnectionStatusAnalytics


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricModelState:
    """Modelo vivo de una métrica y su origen de tiempo (x = ms desde `origin`)."""

    model: BivariateStatusAnalyticsModel
    origin: datetime
    last_timestamp: datetime


@dataclass(frozen=True)
class CacheEntry:
    analytics: ConnectionStatusAnalytics
    computed_monotonic: float
    models: Mapping[str, MetricModelState]


class _ComputeSlot:
    """Lock de recálculo de una conexión y número de hilos que lo usan."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class AnalyticsCache:
    def __init__(self, max_entries: int = 10000) -> None:
        self._max_entries = max(1, int(max_entries))
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._slots: Dict[str, _ComputeSlot] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, connection_id: str) -> Optional[CacheEntry]:
        return self._entries.get(connection_id)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def computing_ids(self) -> list[str]:
        """Conexiones con un recálculo en curso o en espera."""
        with self._lock:
            return list(self._slots)

    @contextmanager
    def computing(self, connection_id: str) -> Iterator[None]:
        """Exclusión mutua de recálculos para `connection_id`.

        El hilo queda registrado antes de bloquearse, así que expulsar o
        invalidar la conexión mientras espera no crea un segundo lock.
        """
        with self._lock:
            slot = self._slots.get(connection_id)
            if slot is None:
                slot = _ComputeSlot()
                self._slots[connection_id] = slot
            slot.users += 1

        try:
            with slot.lock:
                yield
        finally:
            with self._lock:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[connection_id]

    def put(self, connection_id: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[connection_id] = entry
            self._entries.move_to_end(connection_id)

            while len(self._entries) > self._max_entries:
                evicted_id, _ = self._entries.popitem(last=False)
                logger.debug("[CACHE] Expulsada connection_id=%s (max=%d)", evicted_id, self._max_entries)

    def invalidate(self, connection_id: str) -> bool:
        with self._lock:
            return self._entries.pop(connection_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
