"""
Datos de liquidación del vuelto (cómo hacerle llegar el dinero al cliente).

Cada método de pago tiene su propia variante con exactamente los campos que
necesita. La validación despacha de forma exhaustiva sobre el método: un método
desconocido es un error, nunca "completo por defecto".
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Iterable, Mapping, Optional, Union

from .methods import EMAIL_METHODS, PaymentMethod, parse_method

PHONE_PREFIXES = ("0414", "0424", "0412", "0422", "0416", "0426")
PHONE_NUMBER_LENGTH = 7

_NON_DIGITS = re.compile(r"\D")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True, slots=True)
class BankInfo:
    id: int
    name: str
    code: Optional[str] = None
    active: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BankInfo":
        return cls(
            id=int(data["id"]),
            name=str(data.get("name") or ""),
            code=data.get("code"),
            active=bool(data.get("active", True)),
        )


@dataclass(frozen=True, slots=True)
class MobilePaymentDetail:
    cedula: str = ""
    bank_id: Optional[int] = None
    phone_prefix: str = ""
    phone_number: str = ""

    required: ClassVar[tuple[str, ...]] = ("cedula", "bank_id", "phone_number")


@dataclass(frozen=True, slots=True)
class BankTransferDetail:
    account_number: str = ""
    cedula: str = ""
    bank_id: Optional[int] = None

    required: ClassVar[tuple[str, ...]] = ("account_number", "cedula", "bank_id")


@dataclass(frozen=True, slots=True)
class EmailReceiverDetail:
    email: str = ""

    required: ClassVar[tuple[str, ...]] = ("email",)


@dataclass(frozen=True, slots=True)
class CashNoteDetail:
    required: ClassVar[tuple[str, ...]] = ()


SettlementDetail = Union[MobilePaymentDetail, BankTransferDetail, EmailReceiverDetail, CashNoteDetail]

FIELD_LABELS = {
    "cedula": "Cédula",
    "bank_id": "Banco",
    "phone_prefix": "Prefijo",
    "phone_number": "Teléfono",
    "account_number": "Número de Cuenta",
    "email": "Correo Electrónico",
}


def detail_type_for(method: PaymentMethod) -> type:
    """Variante de detalle que corresponde a ``method``."""
    if method is PaymentMethod.BOLIVARES_PAGOMOVIL:
        return MobilePaymentDetail
    if method is PaymentMethod.BOLIVARES_TRANSFERENCIA:
        return BankTransferDetail
    if method in EMAIL_METHODS:
        return EmailReceiverDetail
    if method in (
        PaymentMethod.DOLARES_EFECTIVO,
        PaymentMethod.BOLIVARES_EFECTIVO,
        PaymentMethod.EUROS_EFECTIVO,
    ):
        return CashNoteDetail
    raise ValueError(f"Método de pago desconocido: {method!r}")


def _digits(value: Any) -> str:
    return _NON_DIGITS.sub("", str(value or ""))


def _parse_bank_id(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def mask_field(name: str, value: Any) -> Any:
    """Aplica las máscaras de entrada del formulario de datos del cliente."""
    if name in ("cedula", "account_number"):
        return _digits(value)
    if name == "phone_number":
        return _digits(value)[:PHONE_NUMBER_LENGTH]
    if name == "bank_id":
        return _parse_bank_id(value)
    if name == "phone_prefix":
        txt = str(value or "").strip()
        return txt if txt in PHONE_PREFIXES else ""
    if name == "email":
        return str(value or "").strip()
    raise KeyError(name)


def coerce_payload(raw: Any) -> dict:
    """Normaliza el detalle persistido (dict, JSON string o None) a dict."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        return dict(data) if isinstance(data, Mapping) else {}
    return {}


def detail_from_payload(method: Any, raw: Any) -> SettlementDetail:
    """Construye la variante tipada para ``method`` a partir de datos crudos.

    Los campos que no pertenecen a la variante se ignoran. Sin método se trata
    como efectivo (no requiere datos).
    """
    pm = parse_method(method)
    if pm is None:
        return CashNoteDetail()
    cls = detail_type_for(pm)
    data = coerce_payload(raw)
    kwargs = {}
    for f in fields(cls):
        if f.name in data:
            kwargs[f.name] = mask_field(f.name, data[f.name])
    return cls(**kwargs)


def to_payload(detail: SettlementDetail) -> dict:
    """Dict serializable (solo los campos de la variante)."""
    return {f.name: getattr(detail, f.name) for f in fields(detail)}


def missing_fields(detail: SettlementDetail) -> list[str]:
    """Campos obligatorios vacíos de ``detail``."""
    if isinstance(detail, MobilePaymentDetail):
        checks = {
            "cedula": bool(detail.cedula),
            "bank_id": detail.bank_id is not None,
            "phone_number": bool(detail.phone_number),
        }
    elif isinstance(detail, BankTransferDetail):
        checks = {
            "account_number": bool(detail.account_number),
            "cedula": bool(detail.cedula),
            "bank_id": detail.bank_id is not None,
        }
    elif isinstance(detail, EmailReceiverDetail):
        checks = {"email": bool(detail.email.strip())}
    elif isinstance(detail, CashNoteDetail):
        checks = {}
    else:
        raise TypeError(f"Detalle de liquidación no soportado: {type(detail).__name__}")
    return [name for name, ok in checks.items() if not ok]


def is_detail_complete(detail: SettlementDetail) -> bool:
    return not missing_fields(detail)


def is_complete_for(method: Any, raw: Any) -> bool:
    """Predicado de campos requeridos para un método y sus datos crudos."""
    return is_detail_complete(detail_from_payload(method, raw))


def detail_warnings(detail: SettlementDetail, banks: Iterable[BankInfo] = ()) -> list[str]:
    """Advertencias de formato que no bloquean el guardado."""
    banks = list(banks)
    out: list[str] = bank_reference_errors(detail, banks) if banks else []
    if isinstance(detail, MobilePaymentDetail):
        if detail.phone_number and len(detail.phone_number) != PHONE_NUMBER_LENGTH:
            out.append("El teléfono debe tener 7 dígitos")
        if not detail.phone_prefix:
            out.append("Seleccione el prefijo del teléfono")
    if isinstance(detail, EmailReceiverDetail) and detail.email and not _EMAIL_RE.match(detail.email):
        out.append("El correo no parece válido")
    return out


def _bank_name(banks: Iterable[BankInfo], bank_id: Optional[int]) -> str:
    for b in banks:
        if b.id == bank_id:
            return b.name
    return "N/A"


def format_details_for_copy(method: Any, detail: SettlementDetail, banks: Iterable[BankInfo] = ()) -> str:
    """Texto para copiar al portapapeles con los datos del cliente.

    Devuelve ``""`` para métodos en efectivo o sin método.
    """
    pm = parse_method(method)
    if pm is None:
        return ""
    banks = list(banks)
    if isinstance(detail, MobilePaymentDetail):
        return (
            "PAGO MÓVIL\n"
            f"Cédula: {detail.cedula}\n"
            f"Banco: {_bank_name(banks, detail.bank_id)}\n"
            f"Teléfono: {detail.phone_prefix}{detail.phone_number}"
        )
    if isinstance(detail, BankTransferDetail):
        return (
            "TRANSFERENCIA BANCARIA\n"
            f"Cuenta: {detail.account_number}\n"
            f"Cédula: {detail.cedula}\n"
            f"Banco: {_bank_name(banks, detail.bank_id)}"
        )
    if isinstance(detail, EmailReceiverDetail):
        return f"{pm.short_name}: {detail.email}"
    return ""


def bank_reference_errors(detail: SettlementDetail, banks: Iterable[BankInfo]) -> list[str]:
    """Verifica que ``bank_id`` exista (y esté activo) en el listado de bancos."""
    bank_id = getattr(detail, "bank_id", None)
    if bank_id is None:
        return []
    for b in banks:
        if b.id == bank_id:
            return [] if b.active else [f"El banco {b.name} está inactivo"]
    return [f"El banco {bank_id} no existe en el listado"]
