"""
Utilidades monetarias del módulo de vueltos.

Todos los montos se manejan como ``Decimal`` y se redondean explícitamente a 2
decimales (ROUND_HALF_UP) para evitar la deriva propia de los float en sumas y
en las fórmulas del pago mixto.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Tolerancias usadas por las reglas de vuelto
SUM_TOLERANCE = Decimal("0.01")
SHOW_THRESHOLD = Decimal("0.005")

_CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "VES": "Bs. ",
}


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Convierte ``value`` a Decimal finito o devuelve ``default``.

    Acepta Decimal, int, float y texto (con coma o punto como separador decimal).
    Los float se convierten vía ``str`` para no arrastrar artefactos binarios.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    try:
        if isinstance(value, (int, float)):
            result = Decimal(str(value))
        else:
            txt = str(value).strip().replace(" ", "")
            if not txt:
                return default
            if "," in txt and "." not in txt:
                txt = txt.replace(",", ".")
            result = Decimal(txt)
    except (InvalidOperation, ValueError, TypeError):
        return default
    return result if result.is_finite() else default


def parse_amount(text: Any) -> Optional[Decimal]:
    """Interpreta el monto escrito por el usuario en una fila de pago.

    Devuelve None si está vacío o no es numérico; no filtra negativos.
    """
    return to_decimal(text)


def quantize(value: Any) -> Decimal:
    """Redondea a centavos (2 decimales). Valores inválidos cuentan como 0."""
    dec = to_decimal(value, ZERO)
    return dec.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Any) -> str:
    """Representación fija con 2 decimales, p. ej. ``"12.50"``."""
    return f"{quantize(value):.2f}"


def fmt_number_es(value: Any, decimals: int = 2) -> str:
    """Formatea con separadores es-VE: miles con punto y decimales con coma."""
    dec = to_decimal(value)
    if dec is None:
        return "—"
    quant = Decimal(1).scaleb(-decimals)
    dec = dec.quantize(quant, rounding=ROUND_HALF_UP)
    txt = f"{dec:,.{decimals}f}"
    return txt.replace(",", "_").replace(".", ",").replace("_", ".")


def fmt_money(value: Any, currency: str = "USD") -> str:
    """Equivalente a ``fmtMoney`` del front: símbolo + número es-VE."""
    dec = to_decimal(value)
    if dec is None:
        return "—"
    symbol = _CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    sign = "-" if dec < 0 else ""
    return f"{sign}{symbol}{fmt_number_es(abs(dec))}"
