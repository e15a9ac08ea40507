"""Analítica predictiva de colas entre etapas de un flujo de datos."""

__version__ = "0.1.0"
