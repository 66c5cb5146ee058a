from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.orm import Session, joinedload

from .ledger import Payment
from .methods import parse_agency_method, parse_covered_by, parse_method
from .models import Bank, Base, Order, OrderPayment, PaymentReceipt, Role, UserRole
from .money import parse_amount, quantize
from .settlement import coerce_payload

logger = logging.getLogger(__name__)

# Bancos venezolanos más usados para Pago Móvil / Transferencias (código SUDEBAN)
DEFAULT_BANKS = [
    ("0102", "Banco de Venezuela"),
    ("0104", "Venezolano de Crédito"),
    ("0105", "Mercantil"),
    ("0108", "Provincial"),
    ("0114", "Bancaribe"),
    ("0115", "Banco Exterior"),
    ("0134", "Banesco"),
    ("0151", "BFC Banco Fondo Común"),
    ("0163", "Banco del Tesoro"),
    ("0171", "Banco Activo"),
    ("0172", "Bancamiga"),
    ("0175", "Banco Bicentenario"),
    ("0191", "BNC Banco Nacional de Crédito"),
]


def init_db(engine, seed: bool = True) -> None:
    """Crea tablas y opcionalmente inserta el listado de bancos."""
    Base.metadata.create_all(bind=engine)
    if not seed:
        return
    with Session(bind=engine) as session:
        if session.query(Bank.id).first() is None:
            session.add_all([Bank(code=code, name=name, active=True) for code, name in DEFAULT_BANKS])
            session.commit()
            logger.info("Listado de bancos inicializado (%d bancos)", len(DEFAULT_BANKS))


# --- Bancos ---

def list_banks(session: Session, active_only: bool = True) -> list[Bank]:
    q = session.query(Bank)
    if active_only:
        q = q.filter(Bank.active.is_(True))
    return q.order_by(Bank.name.asc()).all()


def get_bank(session: Session, bank_id: int) -> Bank | None:
    return session.get(Bank, bank_id)


def add_bank(session: Session, *, name: str, code: str | None = None, active: bool = True) -> Bank:
    bank = Bank(name=name, code=code, active=active)
    session.add(bank)
    session.commit()
    session.refresh(bank)
    return bank


def bank_to_dict(bank: Bank) -> dict:
    return {"id": bank.id, "name": bank.name, "code": bank.code, "active": bool(bank.active)}


# --- Orders ---

def create_order(session: Session, *, order_number: str, current_total_price: Any,
                 payments: Iterable[Payment] | None = None) -> Order:
    order = Order(order_number=order_number, current_total_price=quantize(current_total_price))
    for pos, p in enumerate(payments or ()):
        order.payments.append(OrderPayment(position=pos, method=p.method.value, amount=quantize(p.amount), rate=p.rate))
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def get_order(session: Session, order_id: int) -> Order | None:
    return session.get(Order, order_id)


def get_order_full(session: Session, order_id: int) -> Order | None:
    """Retorna la orden con pagos y comprobantes cargados."""
    return (
        session.query(Order)
        .options(joinedload(Order.payments), joinedload(Order.payment_receipts))
        .filter(Order.id == order_id)
        .first()
    )


def _require_order(session: Session, order_id: int) -> Order:
    order = get_order_full(session, order_id)
    if not order:
        raise ValueError(f"Orden {order_id} no encontrada")
    return order


def _dec_text(value: Decimal | None) -> str | None:
    return None if value is None else f"{value}"


def order_to_dict(order: Order) -> dict:
    """Misma forma que devuelve el backend en ``GET /orders/{id}``."""
    return {
        "id": order.id,
        "order_number": order.order_number,
        "current_total_price": _dec_text(order.current_total_price),
        "payments": [
            {"method": p.method, "amount": _dec_text(p.amount), "rate": _dec_text(p.rate)}
            for p in order.payments
        ],
        "cash_received": _dec_text(order.cash_received),
        "change_amount": _dec_text(order.change_amount),
        "change_covered_by": order.change_covered_by or "",
        "change_amount_company": _dec_text(order.change_amount_company),
        "change_amount_agency": _dec_text(order.change_amount_agency),
        "change_method_company": order.change_method_company or "",
        "change_method_agency": order.change_method_agency or "",
        "change_rate": _dec_text(order.change_rate),
        "change_payment_details": coerce_payload(order.change_payment_details),
        "change_receipt": order.change_receipt,
        "payment_receipts": [{"id": r.id, "path": r.path} for r in order.payment_receipts],
    }


def replace_order_payments(session: Session, order_id: int, payments: Iterable[Payment]) -> Order:
    """Reemplaza los pagos de la orden. Reenviar los mismos datos deja el mismo estado."""
    order = _require_order(session, order_id)
    order.payments.clear()
    session.flush()
    for pos, p in enumerate(payments):
        order.payments.append(
            OrderPayment(position=pos, method=p.method.value, amount=quantize(p.amount), rate=p.rate)
        )
    session.commit()
    session.refresh(order)
    return order


def _opt_money(value: Any) -> Decimal | None:
    dec = parse_amount(value)
    return None if dec is None else quantize(dec)


def save_order_change(session: Session, order_id: int, form: Mapping[str, Any]) -> Order:
    """Persiste la asignación de vuelto enviada como ``POST /orders/{id}/change``.

    La tasa ya guardada (> 0) no se sobrescribe.
    """
    order = _require_order(session, order_id)
    covered = parse_covered_by(form.get("change_covered_by"))
    method_company = parse_method(form.get("change_method_company"))
    method_agency = parse_agency_method(form.get("change_method_agency"))

    order.cash_received = _opt_money(form.get("cash_received"))
    order.change_amount = _opt_money(form.get("change_amount"))
    order.change_covered_by = covered.value or None
    order.change_amount_company = _opt_money(form.get("change_amount_company"))
    order.change_amount_agency = _opt_money(form.get("change_amount_agency"))
    order.change_method_company = method_company.value if method_company else None
    order.change_method_agency = method_agency.value if method_agency else None

    new_rate = parse_amount(form.get("change_rate"))
    if not (order.change_rate and order.change_rate > 0) and new_rate and new_rate > 0:
        order.change_rate = new_rate

    details = coerce_payload(form.get("change_payment_details"))
    order.change_payment_details = json.dumps(details, sort_keys=True) if details else None
    if order.processed_at is None:
        order.processed_at = datetime.utcnow()
    session.commit()
    session.refresh(order)
    return order


def set_change_receipt(session: Session, order_id: int, path: str) -> Order:
    order = _require_order(session, order_id)
    order.change_receipt = path
    session.commit()
    return order


def add_payment_receipt(session: Session, order_id: int, path: str) -> PaymentReceipt:
    order = _require_order(session, order_id)
    receipt = PaymentReceipt(path=path)
    order.payment_receipts.append(receipt)
    session.commit()
    session.refresh(receipt)
    return receipt


def delete_payment_receipt(session: Session, order_id: int, receipt_id: int) -> bool:
    receipt = session.get(PaymentReceipt, receipt_id)
    if not receipt or receipt.order_id != order_id:
        return False
    # delete-orphan: quitarlo de la colección lo elimina
    receipt.order.payment_receipts.remove(receipt)
    session.commit()
    return True


def list_pending_changes(session: Session) -> list[Order]:
    """Órdenes con vuelto a cargo de la empresa y sin comprobante."""
    return (
        session.query(Order)
        .filter(Order.change_amount > 0)
        .filter(Order.change_covered_by.in_(("company", "partial")))
        .filter(Order.change_receipt.is_(None))
        .order_by(Order.processed_at.desc())
        .all()
    )


# --- Roles ---

def get_user_role_names(session: Session, *, user_id: int) -> list[str]:
    rows = (
        session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return [name for (name,) in rows]


def get_order_dict(session: Session, order_id: int) -> Optional[dict]:
    order = get_order_full(session, order_id)
    return order_to_dict(order) if order else None
