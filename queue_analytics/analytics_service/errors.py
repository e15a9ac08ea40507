"""Excepciones del motor de analítica.

Los errores locales del cálculo (datos insuficientes, ajuste degenerado)
se absorben en la forma del resultado; los de colaboradores externos solo
llegan al llamador cuando no hay un valor en caché que devolver.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Raíz de los errores de analítica."""


class UnknownEntityError(AnalyticsError):
    """La conexión no existe en la topología."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"connection_id not found: {connection_id}")


class InsufficientDataError(AnalyticsError):
    """Menos observaciones de las necesarias para ajustar un modelo."""

    def __init__(self, metric: str, n_points: int, min_points: int):
        self.metric = metric
        self.n_points = n_points
        self.min_points = min_points
        super().__init__(
            f"insufficient data for '{metric}': {n_points} points (min {min_points})"
        )


class NoFitError(AnalyticsError):
    """Se pidió una predicción a un modelo que aún no ha sido ajustado."""

    def __init__(self, message: str = "model has no fit; call learn() with >= 2 observations"):
        super().__init__(message)


class DegenerateFitError(AnalyticsError):
    """Pendiente nula/indefinida: la recta nunca cruza el valor pedido."""


class UnknownModelKindError(AnalyticsError):
    def __init__(self, kind: str, available: list[str]):
        self.kind = kind
        self.available = available
        super().__init__(
            f"unknown model kind '{kind}'. Available: {', '.join(available) or '-'}"
        )


class UpstreamFailureError(AnalyticsError):
    """Fallo del repositorio de histórico o del resolvedor de umbrales."""

    def __init__(self, connection_id: str, message: str):
        self.connection_id = connection_id
        super().__init__(f"upstream failure for connection {connection_id}: {message}")


class AnalyticsTimeoutError(UpstreamFailureError):
    """El histórico no llegó dentro del plazo configurado."""

    def __init__(self, connection_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            connection_id, f"history fetch exceeded {timeout_seconds:.1f}s deadline"
        )


class NoHistoryDataError(AnalyticsError):
    """El repositorio no tiene histórico para la conexión/métrica.

    El motor lo trata como una serie vacía, no como un fallo.
    """
