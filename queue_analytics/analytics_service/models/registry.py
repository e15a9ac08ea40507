"""Registro de tipos de modelo.

El motor solo conoce nombres de tipo; añadir una familia de curvas nueva es
registrar su constructor aquí (o en un registro propio), sin tocar el motor.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict

from ..config.analytics_config import ModelConfig
from ..errors import UnknownModelKindError
from .bivariate_model import BivariateStatusAnalyticsModel
from .simple_regression import RidgeRegressionModel, SimpleRegressionModel


logger = logging.getLogger(__name__)

ModelConstructor = Callable[[ModelConfig], BivariateStatusAnalyticsModel]


class ModelRegistry:
    def __init__(self) -> None:
        self._constructors: Dict[str, ModelConstructor] = {}
        self._lock = threading.Lock()

    def register(self, kind: str, constructor: ModelConstructor, *, replace: bool = False) -> None:
        key = kind.strip().lower()
        with self._lock:
            if key in self._constructors and not replace:
                raise ValueError(f"model kind already registered: {kind}")
            self._constructors[key] = constructor
        logger.debug("[MODELS] Registrado tipo de modelo '%s'", key)

    def kinds(self) -> list[str]:
        with self._lock:
            return sorted(self._constructors)

    def __contains__(self, kind: object) -> bool:
        if not isinstance(kind, str):
            return False
        with self._lock:
            return kind.strip().lower() in self._constructors

    def create(self, kind: str, config: ModelConfig | None = None) -> BivariateStatusAnalyticsModel:
        """Devuelve una instancia nueva del tipo pedido."""
        cfg = config or ModelConfig(model_type=kind)
        with self._lock:
            constructor = self._constructors.get(kind.strip().lower())
        if constructor is None:
            raise UnknownModelKindError(kind, self.kinds())
        return constructor(cfg)


DEFAULT_MODEL_REGISTRY = ModelRegistry()
DEFAULT_MODEL_REGISTRY.register(
    "linear", lambda cfg: SimpleRegressionModel(clear_on_learn=cfg.clear_on_learn)
)
DEFAULT_MODEL_REGISTRY.register(
    "ridge",
    lambda cfg: RidgeRegressionModel(clear_on_learn=cfg.clear_on_learn, alpha=cfg.ridge_alpha),
)


def create_model(config: ModelConfig, registry: ModelRegistry | None = None) -> BivariateStatusAnalyticsModel:
    return (registry or DEFAULT_MODEL_REGISTRY).create(config.model_type, config)
