from __future__ import annotations

from enum import Enum
from typing import Optional


class PaymentMethod(str, Enum):
    """Métodos de pago/vuelto. El valor es el string que viaja al backend."""

    DOLARES_EFECTIVO = "DOLARES_EFECTIVO"
    BOLIVARES_EFECTIVO = "BOLIVARES_EFECTIVO"
    EUROS_EFECTIVO = "EUROS_EFECTIVO"
    BOLIVARES_PAGOMOVIL = "BOLIVARES_PAGOMOVIL"
    BOLIVARES_TRANSFERENCIA = "BOLIVARES_TRANSFERENCIA"
    ZELLE_DOLARES = "ZELLE_DOLARES"
    BINANCE_DOLARES = "BINANCE_DOLARES"
    PAYPAL_DOLARES = "PAYPAL_DOLARES"
    ZINLI_DOLARES = "ZINLI_DOLARES"

    @property
    def label(self) -> str:
        return METHOD_LABELS[self]

    @property
    def is_cash(self) -> bool:
        return self in CASH_METHODS

    @property
    def is_ves(self) -> bool:
        return self in VES_METHODS

    @property
    def short_name(self) -> str:
        """Prefijo usado en el texto copiado, p. ej. ``ZELLE``."""
        return self.value.split("_")[0]


class ChangeCoveredBy(str, Enum):
    """Quién responde por el vuelto. ``NONE`` viaja como string vacío."""

    NONE = ""
    COMPANY = "company"
    AGENCY = "agency"
    PARTIAL = "partial"

    @property
    def label(self) -> str:
        return COVERED_BY_LABELS[self]

    @property
    def involves_company(self) -> bool:
        return self in (ChangeCoveredBy.COMPANY, ChangeCoveredBy.PARTIAL)

    @property
    def involves_agency(self) -> bool:
        return self in (ChangeCoveredBy.AGENCY, ChangeCoveredBy.PARTIAL)


METHOD_LABELS = {
    PaymentMethod.DOLARES_EFECTIVO: "Dólares efectivo",
    PaymentMethod.BOLIVARES_EFECTIVO: "Bolívares efectivo",
    PaymentMethod.EUROS_EFECTIVO: "Euros efectivo",
    PaymentMethod.BOLIVARES_PAGOMOVIL: "Pago Móvil (Bolívares)",
    PaymentMethod.BOLIVARES_TRANSFERENCIA: "Transferencia Bancaria (Bs)",
    PaymentMethod.ZELLE_DOLARES: "Zelle (Dólares)",
    PaymentMethod.BINANCE_DOLARES: "Binance PAY (USDT)",
    PaymentMethod.PAYPAL_DOLARES: "Paypal (Dólares)",
    PaymentMethod.ZINLI_DOLARES: "Zinli (Dólares)",
}

COVERED_BY_LABELS = {
    ChangeCoveredBy.NONE: "Sin asignar",
    ChangeCoveredBy.COMPANY: "Empresa",
    ChangeCoveredBy.AGENCY: "Agencia",
    ChangeCoveredBy.PARTIAL: "Parcial",
}

CASH_METHODS = frozenset({
    PaymentMethod.DOLARES_EFECTIVO,
    PaymentMethod.BOLIVARES_EFECTIVO,
    PaymentMethod.EUROS_EFECTIVO,
})

# Métodos denominados en bolívares: al guardar se adjunta la tasa (solo informativa)
VES_METHODS = frozenset({
    PaymentMethod.BOLIVARES_EFECTIVO,
    PaymentMethod.BOLIVARES_PAGOMOVIL,
    PaymentMethod.BOLIVARES_TRANSFERENCIA,
})

EMAIL_METHODS = frozenset({
    PaymentMethod.ZELLE_DOLARES,
    PaymentMethod.BINANCE_DOLARES,
    PaymentMethod.PAYPAL_DOLARES,
    PaymentMethod.ZINLI_DOLARES,
})

COMPANY_CHANGE_METHODS = tuple(PaymentMethod)

AGENCY_CHANGE_METHODS = (
    PaymentMethod.DOLARES_EFECTIVO,
    PaymentMethod.BOLIVARES_EFECTIVO,
)


def parse_method(value: object) -> Optional[PaymentMethod]:
    """Devuelve el PaymentMethod para ``value`` o None si está vacío/desconocido."""
    if isinstance(value, PaymentMethod):
        return value
    if value is None:
        return None
    txt = str(value).strip().upper()
    if not txt:
        return None
    try:
        return PaymentMethod(txt)
    except ValueError:
        return None


def parse_covered_by(value: object) -> ChangeCoveredBy:
    if isinstance(value, ChangeCoveredBy):
        return value
    txt = str(value or "").strip().lower()
    if txt in ("", "none", "null"):
        return ChangeCoveredBy.NONE
    try:
        return ChangeCoveredBy(txt)
    except ValueError:
        return ChangeCoveredBy.NONE


def parse_agency_method(value: object) -> Optional[PaymentMethod]:
    """Como ``parse_method`` pero restringido al subconjunto permitido a la agencia."""
    method = parse_method(value)
    if method in AGENCY_CHANGE_METHODS:
        return method
    return None
