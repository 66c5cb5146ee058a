"""
Tasa de referencia BCV (Bs por divisa) para el módulo de vueltos.

Nota importante:
- La tasa se pide una sola vez al backend (``GET /currency``) y solo si la
  orden no tiene ya una tasa guardada distinta de cero.
- Si la petición falla se conserva el valor previo (normalmente 0) y la UI
  muestra "Calculando..." / "N/A"; nunca es un error bloqueante.

No se realizan llamadas en segundo plano; quien lo use decide si ejecutarlo en
un hilo o aceptar un bloqueo breve del UI durante la petición.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from .api import ApiError
from .config import load_settings
from .money import ZERO, fmt_number_es, parse_amount, quantize

logger = logging.getLogger(__name__)

RATE_PENDING_TEXT = "Calculando..."
RATE_MISSING_TEXT = "N/A"

CurrencyFetcher = Callable[[], Mapping[str, Any]]


def extract_rate(payload: Any, currency: str = "eur") -> Optional[Decimal]:
    """Extrae ``data.bcv_<currency>.value`` de la respuesta de ``/currency``.

    Acepta tanto el cuerpo completo (``{"data": {...}}``) como el objeto interno.
    Devuelve la tasa como Decimal si es válida (>0), o None.
    """
    if not isinstance(payload, Mapping):
        return None
    cur: Any = payload
    if "data" in cur and isinstance(cur["data"], Mapping):
        cur = cur["data"]
    for k in (f"bcv_{currency.lower()}", "value"):
        if isinstance(cur, Mapping) and k in cur:
            cur = cur[k]
        else:
            return None
    val = parse_amount(cur)
    return val if val is not None and val > 0 else None


class CurrencyConverter:
    """Resuelve y guarda la tasa usada para mostrar equivalentes en bolívares.

    ``persisted_rate`` es la ``change_rate`` de la orden: si es > 0 queda
    bloqueada y nunca se reemplaza por una tasa recién consultada.
    """

    def __init__(
        self,
        fetcher: Optional[CurrencyFetcher] = None,
        *,
        persisted_rate: Any = None,
        currency: Optional[str] = None,
    ) -> None:
        self._fetcher = fetcher
        self.currency = (currency or load_settings().rate_currency).lower()
        locked = parse_amount(persisted_rate)
        self.locked = locked is not None and locked > 0
        self.rate: Decimal = locked if self.locked else ZERO
        self.fetch_attempted = False
        self.last_error: Optional[str] = None

    @property
    def has_rate(self) -> bool:
        return self.rate > 0

    def ensure_rate(self) -> Decimal:
        """Consulta la tasa una única vez si todavía no hay una disponible."""
        if self.has_rate or self.fetch_attempted or self._fetcher is None:
            return self.rate
        self.fetch_attempted = True
        try:
            payload = self._fetcher()
        except ApiError as e:
            self.last_error = str(e)
            logger.warning("No se pudo obtener la tasa BCV: %s", e)
            return self.rate
        val = extract_rate(payload, self.currency)
        if val is None:
            self.last_error = "Respuesta de tasa sin valor"
            logger.warning("Respuesta de /currency sin bcv_%s.value", self.currency)
            return self.rate
        self.accept(val)
        return self.rate

    def accept(self, rate: Any) -> bool:
        """Registra una tasa obtenida por otra vía. No pisa una tasa ya presente."""
        val = parse_amount(rate)
        if val is None or val <= 0 or self.has_rate:
            return False
        self.rate = val
        self.last_error = None
        logger.debug("Tasa BCV (%s) = %s", self.currency, val)
        return True

    # --- Presentación ---
    def display_rate(self) -> str:
        if self.has_rate:
            return f"{quantize(self.rate):.2f}"
        return RATE_PENDING_TEXT

    def to_bolivares(self, amount: Any) -> Optional[Decimal]:
        """Equivalente en Bs de un monto en divisa, o None sin tasa."""
        val = parse_amount(amount)
        if val is None or not self.has_rate:
            return None
        return quantize(val * self.rate)

    def format_bolivares(self, amount: Any) -> str:
        val = self.to_bolivares(amount)
        if val is None:
            return RATE_MISSING_TEXT
        return fmt_number_es(val)
