from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from ..errors import DegenerateFitError, NoFitError


logger = logging.getLogger(__name__)

SCORE_NAMES = (
    "r_squared",
    "adjusted_r_squared",
    "residual_sum_squares",
    "mean_square_error",
)


@dataclass(frozen=True)
class FitResult:
    """Resultado de un ajuste y = intercept + slope * x.

    `degenerate` indica varianza nula en x: la pendiente no está definida y
    la predicción inversa no es posible.
    """

    slope: float
    intercept: float
    r_squared: float
    adjusted_r_squared: float
    residual_sum_squares: float
    mean_square_error: float
    n_observations: int
    degenerate: bool = False

    @property
    def rmse(self) -> float:
        if not math.isfinite(self.mean_square_error):
            return math.nan
        return math.sqrt(self.mean_square_error)


def _compute_fit(x: np.ndarray, y: np.ndarray, slope: float, intercept: float) -> FitResult:
    n = int(x.size)
    if np.ptp(y) == 0.0:
        # Respuesta constante: recta horizontal exacta, sin ruido numérico del solver
        slope, intercept = 0.0, float(y[0])

    y_hat = intercept + slope * x
    sse = float(np.sum((y - y_hat) ** 2))
    sst = float(np.sum((y - y.mean()) ** 2))

    # y constante: R² no está definido (SST = 0)
    r2 = 1.0 - sse / sst if sst > 0 else math.nan

    # Con n = 2 no quedan grados de libertad para los residuales
    dof = n - 2
    if dof > 0:
        mse = sse / dof
        adj_r2 = 1.0 - (1.0 - r2) * (n - 1) / dof if math.isfinite(r2) else math.nan
    else:
        mse = math.nan
        adj_r2 = math.nan

    return FitResult(
        slope=slope,
        intercept=intercept,
        r_squared=r2,
        adjusted_r_squared=adj_r2,
        residual_sum_squares=sse,
        mean_square_error=mse,
        n_observations=n,
        degenerate=bool(np.ptp(x) == 0.0),
    )


class BivariateStatusAnalyticsModel(ABC):
    """Modelo que relaciona una variable predictora con una respuesta.

    Mantiene el buffer de observaciones y el último ajuste. Las subclases solo
    implementan `_estimate`, que devuelve (slope, intercept) para el buffer.
    """

    def __init__(self, clear_on_learn: bool = False) -> None:
        self._clear_on_learn = bool(clear_on_learn)
        self._x = np.empty(0, dtype=float)
        self._y = np.empty(0, dtype=float)
        self._fit: FitResult | None = None

    @property
    def clear_on_learn(self) -> bool:
        return self._clear_on_learn

    @property
    def fit(self) -> FitResult | None:
        return self._fit

    @property
    def n_observations(self) -> int:
        return int(self._x.size)

    @abstractmethod
    def _estimate(self, x: np.ndarray, y: np.ndarray) -> tuple[float, float]:
        ...

    @abstractmethod
    def supports_online_learning(self) -> bool:
        ...

    def learn(self, features: Iterable[float], labels: Iterable[float]) -> None:
        """Incorpora un lote de observaciones y recalcula el ajuste.

        `features` admite valores sueltos o filas de una columna ([[x], ...]).
        Con menos de 2 observaciones acumuladas el ajuste queda sin definir.
        """
        x = np.asarray(list(features), dtype=float).reshape(-1)
        y = np.asarray(list(labels), dtype=float).reshape(-1)

        if x.size == 0:
            raise ValueError("learn() requires at least one observation")
        if x.size != y.size:
            raise ValueError(f"features/labels length mismatch: {x.size} != {y.size}")
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
            raise ValueError("features and labels must be finite")

        if self._clear_on_learn:
            self._x, self._y = x, y
        else:
            self._x = np.concatenate([self._x, x])
            self._y = np.concatenate([self._y, y])

        if self._x.size < 2:
            self._fit = None
            return

        slope, intercept = self._estimate(self._x, self._y)
        self._fit = _compute_fit(self._x, self._y, float(slope), float(intercept))

        logger.debug(
            "Modelo usando ecuación y = %sx + %s, R2 %s, RMSE %s (n=%d)",
            self._fit.slope,
            self._fit.intercept,
            self._fit.r_squared,
            self._fit.rmse,
            self._fit.n_observations,
        )

    def _require_fit(self) -> FitResult:
        if self._fit is None:
            raise NoFitError()
        return self._fit

    def predict_x(self, y: float) -> float:
        """Predicción inversa: valor de x en el que la recta alcanza `y`."""
        fit = self._require_fit()
        if fit.degenerate or fit.slope == 0.0 or not math.isfinite(fit.slope):
            raise DegenerateFitError(f"no finite crossing for y={y}: slope={fit.slope}")

        x = (float(y) - fit.intercept) / fit.slope
        if not math.isfinite(x):
            raise DegenerateFitError(f"non-finite crossing for y={y}")
        return x

    def predict_y(self, x: float) -> float:
        fit = self._require_fit()
        return fit.slope * float(x) + fit.intercept

    def get_r_squared(self) -> float | None:
        return self._fit.r_squared if self._fit is not None else None

    def get_scores(self) -> dict[str, float] | None:
        """Scores del último ajuste, o None si todavía no hay ajuste."""
        if self._fit is None:
            return None
        return {name: getattr(self._fit, name) for name in SCORE_NAMES}

    def clear(self) -> None:
        self._fit = None
        self._x = np.empty(0, dtype=float)
        self._y = np.empty(0, dtype=float)
