from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from .ledger import Payment
from .money import SHOW_THRESHOLD, SUM_TOLERANCE, ZERO, money_str, parse_amount, quantize

PaymentLike = Union[Payment, Mapping[str, Any]]


@dataclass(frozen=True, slots=True)
class ChangeFigures:
    """Resultado del cálculo de vuelto (todo en USD)."""

    total_received: Decimal
    cash_received: str
    change_amount: Decimal

    @property
    def change_text(self) -> str:
        return money_str(self.change_amount)


def _amount_of(p: PaymentLike) -> Decimal:
    if isinstance(p, Payment):
        return p.amount
    return parse_amount(p.get("amount")) or ZERO


def effective_payments(live: Optional[Sequence[PaymentLike]], persisted: Optional[Sequence[PaymentLike]]) -> Sequence[PaymentLike]:
    """Pagos en edición si existen; si no, los ya guardados en la orden."""
    if live:
        return live
    return persisted or ()


def total_received(payments: Iterable[PaymentLike]) -> Decimal:
    """Suma directa de montos, sin conversión de moneda."""
    total = ZERO
    for p in payments:
        total += _amount_of(p)
    return quantize(total)


def live_change(payments: Iterable[PaymentLike], order_total: Any) -> Decimal:
    """Diferencia con signo entre lo recibido y el total de la orden."""
    return total_received(payments) - quantize(order_total)


def compute_change(payments: Iterable[PaymentLike], order_total: Any, previous_cash_received: Any = "") -> ChangeFigures:
    """Deriva ``cash_received`` y ``change_amount``.

    - change_amount = max(recibido - total, 0)
    - cash_received pasa a ser lo recibido solo si es > 0; si no, conserva el valor previo.
    Función pura: mismas entradas, misma salida.
    """
    received = total_received(payments)
    diff = received - quantize(order_total)
    if received > 0:
        cash = money_str(received)
    else:
        cash = "" if previous_cash_received is None else str(previous_cash_received)
    return ChangeFigures(
        total_received=received,
        cash_received=cash,
        change_amount=diff if diff > 0 else ZERO,
    )


def should_show_change(current_change: Decimal, persisted_change_amount: Any, can_edit: bool) -> bool:
    """Regla de visibilidad de la gestión de vuelto.

    Se muestra si el vuelto calculado es > 0.005, o si la orden ya tiene un
    vuelto guardado > 0 y quien mira no puede editar (histórico), siempre que el
    cálculo actual no sea claramente negativo.
    """
    if current_change > SHOW_THRESHOLD:
        return True
    persisted = parse_amount(persisted_change_amount) or ZERO
    return persisted > 0 and not can_edit and current_change >= -SUM_TOLERANCE
