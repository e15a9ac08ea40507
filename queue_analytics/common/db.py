from __future__ import annotations

from urllib.parse import quote_plus
import logging
import threading

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .config import Settings, get_settings


logger = logging.getLogger(__name__)

_engine: Engine | None = None
_engine_lock = threading.Lock()


def build_sqlalchemy_url(settings: Settings) -> str:
    if settings.database_url:
        return settings.database_url

    # Forma odbc_connect: soporta contraseñas con caracteres especiales,
    # drivers con espacios y la sintaxis SERVER=host,port de SQL Server.
    odbc_str = (
        f"DRIVER={{{settings.odbc_driver}}};"
        f"SERVER={settings.db_host},{settings.db_port};"
        f"DATABASE={settings.db_name};"
        f"UID={settings.db_user};"
        f"PWD={settings.db_password};"
        "TrustServerCertificate=yes;"
    )

    return f"mssql+pyodbc:///?odbc_connect={quote_plus(odbc_str)}"


def create_db_engine(settings: Settings | None = None) -> Engine:
    settings = settings or get_settings()
    url = build_sqlalchemy_url(settings)

    logger.info(
        "[DB] Crear engine host=%s port=%s db=%s user=%s driver=%s",
        settings.db_host,
        settings.db_port,
        settings.db_name,
        settings.db_user,
        settings.odbc_driver,
    )

    engine = create_engine(url, pool_pre_ping=True, future=True)

    # Test de conexión: deja constancia en logs de si se llega a la BD
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Test de conexión OK")
    except Exception:
        logger.exception("[DB] Test de conexión FALLÓ")

    return engine


def get_engine() -> Engine:
    """Engine compartido del proceso, creado en el primer uso."""
    global _engine

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = create_db_engine()
    return _engine
