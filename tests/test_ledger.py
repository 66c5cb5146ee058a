from __future__ import annotations

from decimal import Decimal

import pytest

from src.order_change.ledger import Payment, PaymentLedger, payments_form_fields, payments_with_rate
from src.order_change.methods import PaymentMethod


def test_ledger_always_keeps_one_row() -> None:
    ledger = PaymentLedger()
    assert len(ledger) == 1
    ledger.remove_row(0)
    assert len(ledger) == 1
    assert ledger.rows[0].method == ""
    assert ledger.rows[0].amount == ""


def test_update_row_notifies_valid_subset() -> None:
    seen = []
    ledger = PaymentLedger(on_change=seen.append)
    ledger.update_row(0, "method", "DOLARES_EFECTIVO")
    assert seen[-1] == []  # sin monto todavía
    ledger.update_row(0, "amount", "20")
    ledger.add_row()
    ledger.update_row(1, "amount", "abc")
    assert seen[-1] == [Payment(PaymentMethod.DOLARES_EFECTIVO, Decimal("20"))]


def test_update_row_rejects_unknown_field() -> None:
    ledger = PaymentLedger()
    with pytest.raises(KeyError):
        ledger.update_row(0, "rate", "1")


def test_serialize_filters_invalid_rows() -> None:
    ledger = PaymentLedger([
        {"method": "ZELLE_DOLARES", "amount": "10"},
        {"method": "", "amount": "5"},
        {"method": "BOLIVARES_PAGOMOVIL", "amount": "-1"},
        {"method": "DOLARES_EFECTIVO", "amount": "0"},
    ])
    out = ledger.serialize()
    assert out == [Payment(PaymentMethod.ZELLE_DOLARES, Decimal("10"))]
    assert ledger.validate_all() is False


def test_save_only_calls_on_save_when_all_rows_valid() -> None:
    saved = []
    ledger = PaymentLedger(on_save=saved.append)
    assert ledger.row_errors(0) == {}
    assert ledger.save() is False
    assert saved == []
    assert ledger.touched is True
    assert ledger.row_errors(0) == {"method": "Selecciona un método", "amount": "Monto inválido"}

    ledger.update_row(0, "method", "DOLARES_EFECTIVO")
    ledger.update_row(0, "amount", "15.5")
    assert ledger.save() is True
    assert saved == [[Payment(PaymentMethod.DOLARES_EFECTIVO, Decimal("15.5"))]]


def test_summary_pending_and_paid() -> None:
    ledger = PaymentLedger([{"method": "DOLARES_EFECTIVO", "amount": "60"}])
    s = ledger.summary("100")
    assert s.remaining == Decimal("40.00")
    assert s.text() == "Pendiente: $40,00"

    ledger.add_row()
    ledger.update_row(1, "method", "ZELLE_DOLARES")
    ledger.update_row(1, "amount", "45")
    s = ledger.summary("100")
    assert s.is_paid
    assert s.change == Decimal("5.00")
    assert s.text() == "✔ Pagado Completo (Vuelto: $5,00)"


def test_bolivar_equivalent_only_for_ves_rows() -> None:
    ledger = PaymentLedger([
        {"method": "BOLIVARES_TRANSFERENCIA", "amount": "10"},
        {"method": "ZELLE_DOLARES", "amount": "10"},
    ])
    assert ledger.bolivar_equivalent(0, "36.5") == Decimal("365.00")
    assert ledger.bolivar_equivalent(1, "36.5") is None
    assert ledger.bolivar_equivalent(0, 0) is None


def test_form_fields_attach_rate_to_ves_methods() -> None:
    payments = [
        Payment(PaymentMethod.DOLARES_EFECTIVO, Decimal("20")),
        Payment(PaymentMethod.BOLIVARES_PAGOMOVIL, Decimal("5.5")),
    ]
    body = payments_form_fields(payments_with_rate(payments, "40"))
    assert body == [
        ("payments[0][method]", "DOLARES_EFECTIVO"),
        ("payments[0][amount]", "20.00"),
        ("payments[1][method]", "BOLIVARES_PAGOMOVIL"),
        ("payments[1][amount]", "5.50"),
        ("payments[1][rate]", "40"),
    ]


def test_ledger_to_form_fields_without_rate() -> None:
    ledger = PaymentLedger([{"method": "BOLIVARES_EFECTIVO", "amount": "3"}])
    assert ledger.to_form_fields(None) == [
        ("payments[0][method]", "BOLIVARES_EFECTIVO"),
        ("payments[0][amount]", "3.00"),
    ]
