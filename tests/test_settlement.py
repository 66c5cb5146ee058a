from __future__ import annotations

import pytest

from src.order_change.methods import PaymentMethod
from src.order_change.settlement import (
    BankInfo,
    BankTransferDetail,
    CashNoteDetail,
    EmailReceiverDetail,
    MobilePaymentDetail,
    bank_reference_errors,
    detail_from_payload,
    detail_type_for,
    detail_warnings,
    format_details_for_copy,
    is_complete_for,
    mask_field,
    missing_fields,
    to_payload,
)

BANKS = [BankInfo(id=1, name="Banesco", code="0134"), BankInfo(id=2, name="Mercantil", code="0105", active=False)]


def test_every_method_has_a_detail_variant() -> None:
    for method in PaymentMethod:
        assert detail_type_for(method) in (
            MobilePaymentDetail, BankTransferDetail, EmailReceiverDetail, CashNoteDetail
        )


def test_unknown_method_raises() -> None:
    with pytest.raises(ValueError):
        detail_type_for("CRIPTO")  # type: ignore[arg-type]


def test_mobile_payment_missing_cedula_is_incomplete() -> None:
    raw = {"cedula": "", "bank_id": 1, "phone_number": "1234567"}
    detail = detail_from_payload("BOLIVARES_PAGOMOVIL", raw)
    assert missing_fields(detail) == ["cedula"]
    assert is_complete_for("BOLIVARES_PAGOMOVIL", raw) is False


def test_required_fields_per_method() -> None:
    assert is_complete_for("BOLIVARES_TRANSFERENCIA", {"account_number": "0134000", "cedula": "123", "bank_id": "1"})
    assert not is_complete_for("BOLIVARES_TRANSFERENCIA", {"account_number": "0134000", "cedula": "123"})
    assert is_complete_for("ZELLE_DOLARES", {"email": "a@b.com"})
    assert not is_complete_for("PAYPAL_DOLARES", {"email": "   "})
    assert is_complete_for("DOLARES_EFECTIVO", {})
    assert is_complete_for("EUROS_EFECTIVO", None)
    assert is_complete_for("", {})


def test_payload_accepts_json_string_and_ignores_foreign_fields() -> None:
    detail = detail_from_payload("ZINLI_DOLARES", '{"email": "x@y.com", "cedula": "1"}')
    assert detail == EmailReceiverDetail(email="x@y.com")
    assert to_payload(detail) == {"email": "x@y.com"}


def test_input_masks() -> None:
    assert mask_field("cedula", "V-12.345.678") == "12345678"
    assert mask_field("account_number", "0134-0000 11") == "0134000011"
    assert mask_field("phone_number", "412-123-45678") == "4121234"
    assert mask_field("bank_id", "3") == 3
    assert mask_field("bank_id", "") is None
    assert mask_field("phone_prefix", "0999") == ""
    with pytest.raises(KeyError):
        mask_field("nombre", "x")


def test_bank_reference_errors() -> None:
    assert bank_reference_errors(BankTransferDetail(bank_id=1), BANKS) == []
    assert bank_reference_errors(BankTransferDetail(bank_id=2), BANKS) == ["El banco Mercantil está inactivo"]
    assert bank_reference_errors(BankTransferDetail(bank_id=9), BANKS) == ["El banco 9 no existe en el listado"]
    assert bank_reference_errors(EmailReceiverDetail(email="a@b.com"), BANKS) == []


def test_detail_warnings() -> None:
    d = MobilePaymentDetail(cedula="1", bank_id=1, phone_number="123")
    assert detail_warnings(d, BANKS) == ["El teléfono debe tener 7 dígitos", "Seleccione el prefijo del teléfono"]
    assert detail_warnings(EmailReceiverDetail(email="no-es-correo")) == ["El correo no parece válido"]


def test_copy_text_formats() -> None:
    mobile = MobilePaymentDetail(cedula="12345678", bank_id=1, phone_prefix="0414", phone_number="1234567")
    assert format_details_for_copy("BOLIVARES_PAGOMOVIL", mobile, BANKS) == (
        "PAGO MÓVIL\nCédula: 12345678\nBanco: Banesco\nTeléfono: 04141234567"
    )
    transfer = BankTransferDetail(account_number="01340000", cedula="1", bank_id=99)
    assert format_details_for_copy("BOLIVARES_TRANSFERENCIA", transfer, BANKS) == (
        "TRANSFERENCIA BANCARIA\nCuenta: 01340000\nCédula: 1\nBanco: N/A"
    )
    assert format_details_for_copy("BINANCE_DOLARES", EmailReceiverDetail(email="a@b.com")) == "BINANCE: a@b.com"
    assert format_details_for_copy("DOLARES_EFECTIVO", CashNoteDetail()) == ""
