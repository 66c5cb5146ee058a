"""
Pago mixto: una parte en divisa (con descuento por pago en efectivo) y el
resto en bolívares a la tasa BCV.

    me    = mp / (1 - d)          valor acreditado por el pago en divisa
    mapd  = total - me            lo que falta, en divisa (negativo = sobra)
    mapbs = max(0, mapd * tasa)   lo que falta cobrar en bolívares
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .ledger import Payment, PaymentLedger
from .methods import PaymentMethod
from .money import ZERO, parse_amount, quantize

HARD_CURRENCY_METHOD = PaymentMethod.DOLARES_EFECTIVO
LOCAL_CURRENCY_METHOD = PaymentMethod.BOLIVARES_TRANSFERENCIA


class MixedPaymentInputError(ValueError):
    """Entradas del pago mixto incompletas o inválidas; no se modifica nada."""


@dataclass(frozen=True, slots=True)
class MixedPaymentResult:
    me: Decimal
    mapd: Decimal
    mapbs: Decimal
    rows: tuple[Payment, Payment]


def discount_from_percent(value: Any) -> Decimal:
    """Convierte un porcentaje escrito (``"10"``, ``"10%"``) a fracción."""
    txt = str(value if value is not None else "").strip().rstrip("%")
    pct = parse_amount(txt)
    if pct is None:
        raise MixedPaymentInputError("Descuento inválido")
    return pct / Decimal(100)


def solve_mixed_payment(mp: Any, d: Any, bcv_rate: Any, total_price: Any) -> MixedPaymentResult:
    """Calcula las dos filas que cierran exactamente el total de la orden."""
    mp_dec = parse_amount(mp)
    d_dec = parse_amount(d)
    rate = parse_amount(bcv_rate)
    total = parse_amount(total_price)
    if mp_dec is None or mp_dec < 0:
        raise MixedPaymentInputError("Monto en divisa inválido")
    if d_dec is None or d_dec < 0 or d_dec >= 1:
        raise MixedPaymentInputError("Descuento inválido (debe estar entre 0 y 1)")
    if rate is None or rate <= 0:
        raise MixedPaymentInputError("Tasa BCV no disponible")
    if total is None:
        raise MixedPaymentInputError("Total de la orden inválido")

    me = mp_dec / (Decimal(1) - d_dec)
    mapd = total - me
    mapbs = mapd * rate
    if mapbs < 0:
        mapbs = ZERO
    rows = (
        Payment(method=HARD_CURRENCY_METHOD, amount=quantize(mp_dec)),
        Payment(method=LOCAL_CURRENCY_METHOD, amount=quantize(mapbs)),
    )
    return MixedPaymentResult(me=me, mapd=mapd, mapbs=mapbs, rows=rows)


def apply_mixed_payment(ledger: PaymentLedger, mp: Any, d: Any, bcv_rate: Any, total_price: Any) -> MixedPaymentResult:
    """Resuelve y reemplaza el ledger por las dos filas.

    Si las entradas no son válidas lanza ``MixedPaymentInputError`` sin tocar el ledger.
    """
    result = solve_mixed_payment(mp, d, bcv_rate, total_price)
    ledger.replace_rows(result.rows)
    return result
