from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol, Union

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..errors import UnknownEntityError


logger = logging.getLogger(__name__)

_DATA_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGTP]?B)\s*$", re.IGNORECASE)
_DATA_UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 ** 2,
    "GB": 1024 ** 3,
    "TB": 1024 ** 4,
    "PB": 1024 ** 5,
}

SizeValue = Union[int, str, None]


def parse_data_size(value: SizeValue) -> Optional[int]:
    """Convierte "1 GB", "10 KB", "512 B" o un entero a bytes.

    None o cadena vacía significan "sin límite".
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    if raw.isdigit():
        return int(raw)

    m = _DATA_SIZE_RE.match(raw)
    if not m:
        raise ValueError(f"invalid data size: {value!r}")
    amount, unit = m.groups()
    return int(float(amount) * _DATA_UNITS[unit.upper()])


@dataclass(frozen=True)
class ConnectionThresholds:
    """Límites de backpressure configurados; None = sin límite."""

    bytes_limit: Optional[int] = None
    count_limit: Optional[int] = None


class ThresholdResolver(Protocol):
    def resolve_thresholds(self, connection_id: str) -> ConnectionThresholds:
        """Lanza UnknownEntityError si la conexión no existe."""
        ...


class InMemoryThresholdResolver:
    def __init__(self) -> None:
        self._thresholds: Dict[str, ConnectionThresholds] = {}
        self._lock = threading.Lock()

    def register(
        self,
        connection_id: str,
        bytes_limit: SizeValue = None,
        count_limit: Optional[int] = None,
    ) -> ConnectionThresholds:
        thr = ConnectionThresholds(bytes_limit=parse_data_size(bytes_limit), count_limit=count_limit)
        with self._lock:
            self._thresholds[connection_id] = thr
        return thr

    def remove(self, connection_id: str) -> None:
        with self._lock:
            self._thresholds.pop(connection_id, None)

    def list_connection_ids(self) -> Iterable[str]:
        with self._lock:
            return sorted(self._thresholds)

    def resolve_thresholds(self, connection_id: str) -> ConnectionThresholds:
        with self._lock:
            thr = self._thresholds.get(connection_id)
        if thr is None:
            raise UnknownEntityError(connection_id)
        return thr


class SqlThresholdResolver:
    """Resuelve umbrales desde dbo.connections.

    `backpressure_data_size` se guarda como texto ("1 GB") igual que en la UI
    del flujo; `backpressure_object_count` como entero.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def list_connection_ids(self) -> Iterable[str]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("SELECT id FROM dbo.connections WHERE is_active = 1 ORDER BY id ASC")
            ).fetchall()
        return [str(r[0]) for r in rows]

    def resolve_thresholds(self, connection_id: str) -> ConnectionThresholds:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT backpressure_data_size, backpressure_object_count
                    FROM dbo.connections
                    WHERE id = :connection_id
                    """
                ),
                {"connection_id": connection_id},
            ).fetchone()

        if not row:
            raise UnknownEntityError(connection_id)

        data_size, object_count = row
        try:
            bytes_limit = parse_data_size(data_size)
        except ValueError:
            logger.warning(
                "[THRESHOLDS] connection_id=%s data size inválido %r, se ignora",
                connection_id,
                data_size,
            )
            bytes_limit = None

        return ConnectionThresholds(
            bytes_limit=bytes_limit,
            count_limit=int(object_count) if object_count is not None else None,
        )
