from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional

from .ledger import Payment
from .methods import ChangeCoveredBy, PaymentMethod, parse_agency_method, parse_covered_by, parse_method
from .money import ZERO, parse_amount
from .settlement import coerce_payload


@dataclass(frozen=True)
class ReceiptRef:
    id: int
    path: str


@dataclass(frozen=True)
class OrderSnapshot:
    """Vista inmutable de los campos de la orden que usa el motor de vueltos.

    Se construye desde el JSON del backend (o desde la BD local con el mismo
    formato). Los campos de texto vacíos se conservan como "" para poder
    comparar contra lo editado.
    """

    id: int
    order_number: str = ""
    current_total_price: Decimal = ZERO
    payments: tuple[Payment, ...] = ()
    cash_received: str = ""
    change_amount: str = ""
    change_covered_by: ChangeCoveredBy = ChangeCoveredBy.NONE
    change_amount_company: str = ""
    change_amount_agency: str = ""
    change_method_company: Optional[PaymentMethod] = None
    change_method_agency: Optional[PaymentMethod] = None
    change_rate: Decimal = ZERO
    change_payment_details: Mapping[str, Any] = field(default_factory=dict)
    change_receipt: Optional[str] = None
    payment_receipts: tuple[ReceiptRef, ...] = ()

    @property
    def persisted_change_amount(self) -> Decimal:
        return parse_amount(self.change_amount) or ZERO

    @property
    def has_locked_rate(self) -> bool:
        return self.change_rate > 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OrderSnapshot":
        payments = []
        for raw in data.get("payments") or ():
            p = Payment.from_dict(raw)
            if p is not None:
                payments.append(p)
        receipts = tuple(
            ReceiptRef(id=int(r["id"]), path=str(r.get("path") or ""))
            for r in data.get("payment_receipts") or ()
        )
        return cls(
            id=int(data["id"]),
            order_number=str(data.get("order_number") or ""),
            current_total_price=parse_amount(data.get("current_total_price")) or ZERO,
            payments=tuple(payments),
            cash_received=_text(data.get("cash_received")),
            change_amount=_text(data.get("change_amount")),
            change_covered_by=parse_covered_by(data.get("change_covered_by")),
            change_amount_company=_text(data.get("change_amount_company")),
            change_amount_agency=_text(data.get("change_amount_agency")),
            change_method_company=parse_method(data.get("change_method_company")),
            change_method_agency=parse_agency_method(data.get("change_method_agency")),
            change_rate=parse_amount(data.get("change_rate")) or ZERO,
            change_payment_details=coerce_payload(data.get("change_payment_details")),
            change_receipt=data.get("change_receipt") or None,
            payment_receipts=receipts,
        )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)
