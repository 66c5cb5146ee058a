from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_data_dir
from .models import Base

logger = logging.getLogger(__name__)

_MEMORY_URLS = {":memory:", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:"}


def get_default_db_path() -> Path:
    return get_data_dir() / "order_change.db"


def make_engine(db_path: Path | str | None = None):
    """Crear un engine de SQLAlchemy.

    Prioridad de conexión:
    1) Si se pasa ``db_path`` (ruta SQLite o URL completa), respetar ese destino.
    2) Si existe la variable de entorno ``DATABASE_URL``, usarla.
    3) Usar SQLite local por defecto en ``./data/order_change.db``.
    """
    if db_path is not None:
        s = str(db_path)
        if s in _MEMORY_URLS:
            # Base de datos en memoria: StaticPool para que todas las conexiones
            # compartan el mismo contexto durante las pruebas.
            return create_engine(
                "sqlite+pysqlite:///:memory:",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        if "://" in s:
            return create_engine(s, pool_pre_ping=True)
        return create_engine(f"sqlite:///{s}", connect_args={"check_same_thread": False})

    env_url = os.getenv("DATABASE_URL")
    if env_url:
        if env_url in _MEMORY_URLS:
            return make_engine(env_url)
        return create_engine(env_url, pool_pre_ping=True)

    url = f"sqlite:///{get_default_db_path()}"
    return create_engine(url, connect_args={"check_same_thread": False})


def make_session_factory(engine=None):
    engine = engine or make_engine()
    # ORDER_CHANGE_SKIP_CREATE_ALL=1 cuando el esquema lo gestiona el servidor
    skip_create = os.getenv("ORDER_CHANGE_SKIP_CREATE_ALL", "0").lower() in ("1", "true", "yes")
    if not skip_create:
        Base.metadata.create_all(bind=engine)
    # expire_on_commit=False evita errores de "not bound to a Session" al leer fuera del contexto
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
