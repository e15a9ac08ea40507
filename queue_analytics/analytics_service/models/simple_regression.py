from __future__ import annotations

import numpy as np
from sklearn.linear_model import LinearRegression, Ridge

from .bivariate_model import BivariateStatusAnalyticsModel


class SimpleRegressionModel(BivariateStatusAnalyticsModel):
    """Regresión lineal por mínimos cuadrados (OLS).

    Aprende de forma online: sin `clear_on_learn` cada lote se acumula y se
    reajusta sobre todas las observaciones retenidas.
    """

    def _build_estimator(self):
        return LinearRegression()

    def _estimate(self, x: np.ndarray, y: np.ndarray) -> tuple[float, float]:
        model = self._build_estimator()
        model.fit(x.reshape(-1, 1), y)
        return float(model.coef_[0]), float(model.intercept_)

    def supports_online_learning(self) -> bool:
        return True


class RidgeRegressionModel(SimpleRegressionModel):
    """Variante Ridge (L2), útil con series ruidosas y pocas observaciones."""

    def __init__(self, clear_on_learn: bool = False, alpha: float = 1.0) -> None:
        super().__init__(clear_on_learn=clear_on_learn)
        self.alpha = float(alpha)

    def _build_estimator(self):
        return Ridge(alpha=self.alpha)
