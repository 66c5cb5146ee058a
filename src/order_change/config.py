from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Cargar variables desde .env si existe
load_dotenv()

DEFAULT_EDIT_ROLES = ("Gerente", "Admin", "Vendedor")


@dataclass(frozen=True)
class Settings:
    api_url: str
    api_token: str | None
    api_timeout: float
    rate_currency: str
    edit_roles: tuple[str, ...]
    data_dir_override: str | None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        val = float(raw)
    except ValueError:
        return default
    return val if val > 0 else default


def load_settings() -> Settings:
    """Lee la configuración del entorno.

    - BACKOFFICE_API_URL: URL base del backend (p. ej. https://api.ejemplo.com/api)
    - BACKOFFICE_API_TOKEN: token Bearer
    - BACKOFFICE_API_TIMEOUT: segundos por petición (por defecto 10)
    - CHANGE_RATE_CURRENCY: ``eur`` (por defecto) o ``usd``; qué tasa BCV se usa
    - ORDER_CHANGE_EDIT_ROLES: roles con permiso de edición, separados por coma
    """
    rate_currency = (os.getenv("CHANGE_RATE_CURRENCY") or "eur").strip().lower()
    if rate_currency not in ("eur", "usd"):
        rate_currency = "eur"
    roles_raw = os.getenv("ORDER_CHANGE_EDIT_ROLES")
    if roles_raw:
        edit_roles = tuple(r.strip() for r in roles_raw.split(",") if r.strip())
    else:
        edit_roles = DEFAULT_EDIT_ROLES
    return Settings(
        api_url=(os.getenv("BACKOFFICE_API_URL") or "http://localhost:8000/api").rstrip("/"),
        api_token=os.getenv("BACKOFFICE_API_TOKEN") or None,
        api_timeout=_env_float("BACKOFFICE_API_TIMEOUT", 10.0),
        rate_currency=rate_currency,
        edit_roles=edit_roles,
        data_dir_override=os.getenv("ORDER_CHANGE_DATA_DIR") or None,
    )


def get_data_dir() -> Path:
    """Carpeta de datos persistente (``./data`` o ORDER_CHANGE_DATA_DIR)."""
    override = load_settings().data_dir_override
    d = Path(override).expanduser() if override else Path.cwd() / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d
