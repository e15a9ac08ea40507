"""Servicio de analítica de estado de conexiones.

Módulos:
- config: configuración del motor y de los modelos
- models: modelos bivariantes y registro de tipos de modelo
- repository: colaboradores externos (histórico y umbrales)
- engine: motor de analítica con caché por conexión
- status_analytics: valor inmutable con las predicciones
- main: API FastAPI
"""

from .errors import (
    AnalyticsError,
    AnalyticsTimeoutError,
    DegenerateFitError,
    InsufficientDataError,
    NoFitError,
    UnknownEntityError,
    UnknownModelKindError,
    UpstreamFailureError,
)
from .status_analytics import BackpressureEta, ConnectionStatusAnalytics, EtaStatus

__all__ = [
    "AnalyticsError",
    "AnalyticsTimeoutError",
    "DegenerateFitError",
    "InsufficientDataError",
    "NoFitError",
    "UnknownEntityError",
    "UnknownModelKindError",
    "UpstreamFailureError",
    "BackpressureEta",
    "ConnectionStatusAnalytics",
    "EtaStatus",
]
