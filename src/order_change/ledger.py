from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from .methods import PaymentMethod, parse_method
from .money import SUM_TOLERANCE, ZERO, fmt_money, money_str, parse_amount, quantize

logger = logging.getLogger(__name__)

ROW_FIELDS = ("method", "amount")


@dataclass(frozen=True, slots=True)
class Payment:
    """Pago ya validado. ``amount`` siempre está expresado en USD.

    ``rate`` es informativo (equivalente en Bs); no convierte ``amount``.
    """

    method: PaymentMethod
    amount: Decimal
    rate: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["Payment"]:
        method = parse_method(data.get("method"))
        amount = parse_amount(data.get("amount"))
        if method is None or amount is None or amount <= 0:
            return None
        rate = parse_amount(data.get("rate"))
        return cls(method=method, amount=amount, rate=rate if rate and rate > 0 else None)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"method": self.method.value, "amount": money_str(self.amount)}
        if self.rate is not None:
            data["rate"] = str(self.rate)
        return data


@dataclass(slots=True)
class PaymentRow:
    """Fila editable: el monto se guarda como texto mientras el usuario escribe."""

    method: str = ""
    amount: str = ""

    def parsed_amount(self) -> Optional[Decimal]:
        return parse_amount(self.amount)

    def is_valid(self) -> bool:
        if parse_method(self.method) is None:
            return False
        value = self.parsed_amount()
        return value is not None and value > 0


@dataclass(frozen=True, slots=True)
class LedgerSummary:
    total_paid: Decimal
    remaining: Decimal
    change: Decimal

    @property
    def is_paid(self) -> bool:
        return self.remaining <= SUM_TOLERANCE

    def text(self) -> str:
        if not self.is_paid:
            return f"Pendiente: {fmt_money(self.remaining)}"
        if self.change > SUM_TOLERANCE:
            return f"✔ Pagado Completo (Vuelto: {fmt_money(self.change)})"
        return "✔ Pagado Completo"


PaymentsCallback = Callable[[list[Payment]], None]


class PaymentLedger:
    """Lista ordenada de filas de pago (método + monto).

    Siempre mantiene al menos una fila. ``on_change`` recibe en cada edición el
    subconjunto válido serializado (sirve para la vista previa del vuelto);
    ``on_save`` solo se invoca desde ``save()`` si todas las filas son válidas.
    """

    def __init__(
        self,
        initial: Optional[Iterable[Payment | Mapping[str, Any]]] = None,
        *,
        on_change: Optional[PaymentsCallback] = None,
        on_save: Optional[PaymentsCallback] = None,
    ) -> None:
        self.on_change = on_change
        self.on_save = on_save
        self.touched = False
        self._rows: list[PaymentRow] = []
        self._load(initial or ())

    # --- carga ---
    def _load(self, payments: Iterable[Payment | Mapping[str, Any]]) -> None:
        rows: list[PaymentRow] = []
        for p in payments:
            if isinstance(p, Payment):
                rows.append(PaymentRow(method=p.method.value, amount=str(p.amount)))
            else:
                rows.append(PaymentRow(method=str(p.get("method") or ""), amount=str(p.get("amount") or "")))
        self._rows = rows or [PaymentRow()]

    @property
    def rows(self) -> Sequence[PaymentRow]:
        return tuple(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    # --- operaciones de filas ---
    def add_row(self) -> None:
        self._rows.append(PaymentRow())

    def update_row(self, index: int, field: str, value: Any) -> None:
        if field not in ROW_FIELDS:
            raise KeyError(f"Campo de fila desconocido: {field!r}")
        row = self._rows[index]
        setattr(row, field, "" if value is None else str(value))
        self._notify()

    def remove_row(self, index: int) -> None:
        if len(self._rows) == 1:
            # siempre dejamos al menos una fila
            self._rows = [PaymentRow()]
        else:
            del self._rows[index]
        self._notify()

    def replace_rows(self, payments: Iterable[Payment]) -> None:
        """Reemplaza todas las filas (lo usa el pago mixto)."""
        self._load(payments)
        self._notify()

    # --- serialización / validación ---
    def serialize(self) -> list[Payment]:
        result: list[Payment] = []
        for row in self._rows:
            method = parse_method(row.method)
            amount = row.parsed_amount()
            if method is None or amount is None or amount <= 0:
                continue
            result.append(Payment(method=method, amount=amount))
        return result

    def validate_all(self) -> bool:
        return all(row.is_valid() for row in self._rows)

    def row_errors(self, index: int) -> dict[str, str]:
        """Errores de la fila, solo visibles después de intentar guardar."""
        if not self.touched:
            return {}
        row = self._rows[index]
        errors: dict[str, str] = {}
        if parse_method(row.method) is None:
            errors["method"] = "Selecciona un método"
        value = row.parsed_amount()
        if value is None or value <= 0:
            errors["amount"] = "Monto inválido"
        return errors

    def save(self) -> bool:
        """Acción "Guardar": marca el formulario y entrega los pagos si todo es válido."""
        self.touched = True
        if not self.validate_all():
            logger.debug("Ledger con filas inválidas; no se guarda")
            return False
        if self.on_save is not None:
            self.on_save(self.serialize())
        return True

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.serialize())

    # --- totales y presentación ---
    def total_paid(self) -> Decimal:
        """Suma de todas las filas con monto numérico (incluye filas sin método)."""
        total = ZERO
        for row in self._rows:
            value = row.parsed_amount()
            if value is not None:
                total += value
        return total

    def summary(self, order_total: Any) -> LedgerSummary:
        total = quantize(order_total)
        paid = quantize(self.total_paid())
        remaining = total - paid
        return LedgerSummary(
            total_paid=paid,
            remaining=remaining if remaining > 0 else ZERO,
            change=-remaining if remaining < 0 else ZERO,
        )

    def bolivar_equivalent(self, index: int, rate: Any) -> Optional[Decimal]:
        """Equivalente en Bs de una fila VES, o None si no aplica."""
        row = self._rows[index]
        method = parse_method(row.method)
        value = row.parsed_amount()
        rate_dec = parse_amount(rate)
        if method is None or not method.is_ves or value is None or value <= 0:
            return None
        if rate_dec is None or rate_dec <= 0:
            return None
        return quantize(value * rate_dec)

    def to_form_fields(self, rate: Any = None) -> list[tuple[str, str]]:
        """Pagos válidos con la tasa adjunta, listos para ``PUT /orders/{id}/payment``."""
        return payments_form_fields(payments_with_rate(self.serialize(), rate))


def payments_with_rate(payments: Iterable[Payment], rate: Any) -> list[Payment]:
    """Adjunta la tasa a los pagos en bolívares (solo si hay tasa > 0)."""
    rate_dec = parse_amount(rate)
    out: list[Payment] = []
    for p in payments:
        if p.method.is_ves and rate_dec is not None and rate_dec > 0:
            out.append(Payment(method=p.method, amount=p.amount, rate=rate_dec))
        else:
            out.append(Payment(method=p.method, amount=p.amount))
    return out


def payments_form_fields(payments: Iterable[Payment]) -> list[tuple[str, str]]:
    """Cuerpo url-encoded de ``PUT /orders/{id}/payment``."""
    body: list[tuple[str, str]] = []
    for i, p in enumerate(payments):
        body.append((f"payments[{i}][method]", p.method.value))
        body.append((f"payments[{i}][amount]", money_str(p.amount)))
        if p.rate is not None:
            body.append((f"payments[{i}][rate]", str(p.rate)))
    return body
