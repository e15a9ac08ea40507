from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class ModelConfig:
    """Configuración de los modelos bivariantes (uno por métrica)."""

    model_type: str = "linear"
    # True = cada learn() sustituye las observaciones previas
    clear_on_learn: bool = False
    ridge_alpha: float = 1.0

    @classmethod
    def from_env(cls) -> "ModelConfig":
        return cls(
            model_type=os.getenv("ANALYTICS_MODEL_TYPE", "linear"),
            clear_on_learn=_env_bool("ANALYTICS_CLEAR_ON_LEARN", "false"),
            ridge_alpha=float(os.getenv("ANALYTICS_RIDGE_ALPHA", "1.0")),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Configuración del motor de analítica."""

    # Ventana de histórico que se pide al repositorio
    lookback_minutes: int = 60
    lookback_points: int = 1000
    min_points: int = 2
    # Horizonte de la predicción "siguiente intervalo"
    horizon_minutes: int = 5
    # Tiempo que un resultado en caché se considera vigente
    refresh_interval_seconds: float = 60.0
    fetch_timeout_seconds: float = 10.0
    fetch_workers: int = 4
    max_cached_connections: int = 10000
    model: ModelConfig = field(default_factory=ModelConfig)

    def __post_init__(self) -> None:
        if self.lookback_points <= 0:
            raise ValueError(f"lookback_points must be positive, got {self.lookback_points}")
        if self.lookback_minutes <= 0:
            raise ValueError(f"lookback_minutes must be positive, got {self.lookback_minutes}")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            lookback_minutes=int(os.getenv("ANALYTICS_LOOKBACK_MINUTES", "60")),
            lookback_points=int(os.getenv("ANALYTICS_LOOKBACK_POINTS", "1000")),
            min_points=int(os.getenv("ANALYTICS_MIN_POINTS", "2")),
            horizon_minutes=int(os.getenv("ANALYTICS_HORIZON_MINUTES", "5")),
            refresh_interval_seconds=float(os.getenv("ANALYTICS_REFRESH_SECONDS", "60")),
            fetch_timeout_seconds=float(os.getenv("ANALYTICS_FETCH_TIMEOUT", "10")),
            fetch_workers=int(os.getenv("ANALYTICS_FETCH_WORKERS", "4")),
            max_cached_connections=int(os.getenv("ANALYTICS_MAX_CACHED", "10000")),
            model=ModelConfig.from_env(),
        )


@dataclass(frozen=True)
class ServiceSettings:
    """Configuración de la API y del runner."""

    # "sql" usa la BD de histórico; "memory" arranca con repositorios vacíos
    backend: str = "sql"
    engine: EngineConfig = field(default_factory=EngineConfig)

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            backend=os.getenv("ANALYTICS_BACKEND", "sql").lower(),
            engine=EngineConfig.from_env(),
        )


DEFAULT_ENGINE_CONFIG = EngineConfig()
