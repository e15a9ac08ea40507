from .bivariate_model import BivariateStatusAnalyticsModel, FitResult
from .registry import DEFAULT_MODEL_REGISTRY, ModelRegistry, create_model
from .simple_regression import RidgeRegressionModel, SimpleRegressionModel

__all__ = [
    "BivariateStatusAnalyticsModel",
    "FitResult",
    "DEFAULT_MODEL_REGISTRY",
    "ModelRegistry",
    "create_model",
    "RidgeRegressionModel",
    "SimpleRegressionModel",
]
