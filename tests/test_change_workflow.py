"""
Flujo completo del vuelto contra la BD local (LocalGateway).
"""

from decimal import Decimal

import pytest

from src.order_change.allocator import Phase
from src.order_change.api import ServerRejection, TransportError
from src.order_change.events import events
from src.order_change.ledger import Payment
from src.order_change.methods import ChangeCoveredBy, PaymentMethod
from src.order_change.permissions import session_for_roles
from src.order_change.repository import create_order
from src.order_change.services.change_workflow import ChangeWorkflow, InFlightGuard, load_pending_changes
from src.order_change.services.local_gateway import LocalGateway, parse_payment_fields

EDITOR = session_for_roles("ana", ["Vendedor"], ["Vendedor"])
VIEWER = session_for_roles("luis", ["Cliente"], ["Vendedor"])


class FailingGateway(LocalGateway):
    error = TransportError()

    def save_change(self, order_id, form_fields):
        raise self.error

    def list_pending_changes(self):
        raise self.error


class ReentrantGateway(LocalGateway):
    workflow = None
    nested = None

    def save_change(self, order_id, form_fields):
        self.nested = self.workflow.save_change()
        super().save_change(order_id, form_fields)


@pytest.fixture
def gateway(session_factory, tmp_path):
    return LocalGateway(session_factory, rates={"eur": "40"}, receipts_dir=tmp_path / "receipts")


@pytest.fixture
def order_id(session_factory):
    with session_factory() as s:
        order = create_order(
            s,
            order_number="ORD-1",
            current_total_price="100",
            payments=[Payment(PaymentMethod.DOLARES_EFECTIVO, Decimal("110"))],
        )
        return order.id


@pytest.fixture
def notifications():
    seen = []

    def _on(level, message):
        seen.append((level, message))

    events.notification.connect(_on)
    yield seen
    events.notification.disconnect(_on)


def _fill_company_mobile(wf, bank_id):
    wf.choose_responsibility(ChangeCoveredBy.COMPANY)
    wf.edit_field("change_method_company", "BOLIVARES_PAGOMOVIL")
    wf.edit_detail("cedula", "V-123")
    wf.edit_detail("bank_id", bank_id)
    wf.edit_detail("phone_prefix", "0414")
    wf.edit_detail("phone_number", "1234567")


def test_open_computes_change_and_rate(gateway, order_id):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    assert wf.state.form.change_amount == "10.00"
    assert wf.state.form.cash_received == "110.00"
    assert wf.state.form.change_rate == Decimal("40")
    assert wf.state.phase is Phase.PENDING
    assert wf.state.is_visible
    assert len(wf.banks) == 13


def test_save_change_and_upload_receipt(gateway, order_id, bank_ids, tmp_path, notifications):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    _fill_company_mobile(wf, bank_ids["0134"])
    assert wf.state.phase is Phase.READY

    assert wf.save_change() is True
    assert ("success", "Vuelto actualizado correctamente") in notifications
    assert wf.state.phase is Phase.SAVED

    persisted = gateway.get_order(order_id)
    assert persisted["change_covered_by"] == "company"
    assert persisted["change_method_company"] == "BOLIVARES_PAGOMOVIL"
    assert Decimal(persisted["change_rate"]) == Decimal("40")
    assert persisted["change_payment_details"] == {
        "bank_id": bank_ids["0134"], "cedula": "123", "phone_number": "1234567", "phone_prefix": "0414",
    }
    assert [o.id for o in load_pending_changes(gateway)] == [order_id]

    receipt = tmp_path / "vuelto.png"
    receipt.write_bytes(b"png")
    assert wf.upload_change_receipt(receipt) is True
    assert wf.state.phase is Phase.RECEIPT_ATTACHED
    assert gateway.list_pending_changes() == []


def test_copy_text_uses_bank_name(gateway, order_id, bank_ids):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    _fill_company_mobile(wf, bank_ids["0134"])
    assert wf.copy_text() == "PAGO MÓVIL\nCédula: 123\nBanco: Banesco\nTeléfono: 04141234567"


def test_saved_rate_is_kept_on_reopen(gateway, order_id):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    wf.choose_responsibility(ChangeCoveredBy.AGENCY)
    wf.edit_field("change_method_agency", "DOLARES_EFECTIVO")
    assert wf.save_change()

    gateway.rates = {"eur": "55"}
    again = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    assert again.converter.locked
    assert again.state.form.change_rate == Decimal("40")
    assert again.state.phase is Phase.SAVED


def test_save_payments_attaches_rate_and_reloads(gateway, order_id, notifications):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    wf.ledger.update_row(0, "amount", "120")
    wf.ledger.add_row()
    wf.ledger.update_row(1, "method", "BOLIVARES_PAGOMOVIL")
    wf.ledger.update_row(1, "amount", "5")
    assert wf.state.form.change_amount == "25.00"

    assert wf.save_payments() is True
    assert ("success", "Pagos guardados") in notifications
    assert gateway.get_order(order_id)["payments"] == [
        {"method": "DOLARES_EFECTIVO", "amount": "120.00", "rate": None},
        {"method": "BOLIVARES_PAGOMOVIL", "amount": "5.00", "rate": "40.0000"},
    ]
    assert [p.amount for p in wf.order.payments] == [Decimal("120.00"), Decimal("5.00")]


def test_invalid_rows_are_not_sent(gateway, order_id, notifications):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    wf.ledger.update_row(0, "method", "")
    assert wf.save_payments() is False
    assert ("warning", "Revise los pagos: método y monto son obligatorios") in notifications
    assert wf.ledger.row_errors(0) == {"method": "Selecciona un método"}


def test_read_only_user_cannot_modify(gateway, order_id, notifications):
    wf = ChangeWorkflow.open(gateway, VIEWER, order_id, rate_currency="eur")
    wf.choose_responsibility(ChangeCoveredBy.COMPANY)
    assert wf.state.form.change_covered_by is ChangeCoveredBy.NONE
    assert wf.save_payments() is False
    assert wf.save_change() is False
    assert ("warning", "No tiene permisos para modificar pagos") in notifications
    assert ("warning", "No tiene permisos para modificar el vuelto") in notifications


@pytest.mark.parametrize(
    "error, message",
    [
        (TransportError(), "Error de conexión"),
        (ServerRejection(422, "Monto inválido"), "Monto inválido"),
    ],
)
def test_failed_save_keeps_form(session_factory, order_id, notifications, error, message):
    gateway = FailingGateway(session_factory, rates={"eur": "40"})
    gateway.error = error
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    wf.choose_responsibility(ChangeCoveredBy.AGENCY)
    wf.edit_field("change_method_agency", "DOLARES_EFECTIVO")

    assert wf.save_change() is False
    assert ("error", message) in notifications
    assert wf.state.last_error == message
    assert not wf.state.saving
    assert wf.state.form.change_covered_by is ChangeCoveredBy.AGENCY
    assert wf.state.phase is Phase.READY


def test_pending_list_failure_returns_empty(session_factory, notifications):
    gateway = FailingGateway(session_factory)
    assert load_pending_changes(gateway) == []
    assert ("error", "Error de conexión") in notifications


def test_same_action_is_not_sent_twice(session_factory, order_id):
    gateway = ReentrantGateway(session_factory, rates={"eur": "40"})
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    gateway.workflow = wf
    wf.choose_responsibility(ChangeCoveredBy.AGENCY)
    wf.edit_field("change_method_agency", "DOLARES_EFECTIVO")
    assert wf.save_change() is True
    assert gateway.nested is False


def test_in_flight_guard_is_per_action():
    guard = InFlightGuard()
    with guard.hold("change") as first:
        assert first
        with guard.hold("change") as second:
            assert not second
        with guard.hold("payments") as other:
            assert other
        assert guard.busy("change")
    assert not guard.busy("change")


def test_mixed_payment_replaces_rows(gateway, order_id, notifications):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    result = wf.apply_mixed_payment("60", "10")
    assert result is not None
    assert [(r.method, r.amount) for r in wf.ledger.rows] == [
        ("DOLARES_EFECTIVO", "60.00"),
        ("BOLIVARES_TRANSFERENCIA", "1333.33"),
    ]

    assert wf.apply_mixed_payment("60", "100") is None
    assert ("warning", "Descuento inválido (debe estar entre 0 y 1)") in notifications
    assert len(wf.ledger) == 2


def test_payment_receipts_roundtrip(gateway, order_id, tmp_path, notifications):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    f = tmp_path / "pago.jpg"
    f.write_bytes(b"jpg")
    assert wf.upload_payment_receipt(f) is True
    assert len(wf.order.payment_receipts) == 1
    receipt_id = wf.order.payment_receipts[0].id

    assert wf.delete_payment_receipt(receipt_id + 100) is False
    assert ("error", "Comprobante no encontrado") in notifications
    assert wf.delete_payment_receipt(receipt_id) is True
    assert wf.order.payment_receipts == ()


def test_unknown_order_is_rejected(gateway):
    with pytest.raises(ServerRejection) as exc:
        gateway.get_order(999)
    assert exc.value.status == 404


def test_parse_payment_fields_orders_by_index():
    payments = parse_payment_fields([
        ("_method", "PUT"),
        ("payments[1][method]", "ZELLE_DOLARES"),
        ("payments[1][amount]", "5"),
        ("payments[0][method]", "DOLARES_EFECTIVO"),
        ("payments[0][amount]", "10.50"),
    ])
    assert [(p.method, p.amount) for p in payments] == [
        (PaymentMethod.DOLARES_EFECTIVO, Decimal("10.50")),
        (PaymentMethod.ZELLE_DOLARES, Decimal("5")),
    ]
    with pytest.raises(ServerRejection):
        parse_payment_fields([("payments[0][method]", "DOLARES_EFECTIVO"), ("payments[0][amount]", "0")])


def test_cleared_row_uses_saved_payments(gateway, order_id):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    wf.ledger.update_row(0, "amount", "200")
    assert wf.state.form.change_amount == "100.00"
    wf.ledger.update_row(0, "amount", "")
    assert wf.state.form.change_amount == "10.00"
    assert wf.state.form.cash_received == "110.00"


def test_unknown_bank_blocks_save(gateway, order_id, notifications):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    _fill_company_mobile(wf, 9999)
    assert wf.state.is_ready
    assert wf.bank_errors() == ["El banco 9999 no existe en el listado"]

    assert wf.save_change() is False
    assert ("warning", "El banco 9999 no existe en el listado") in notifications
    assert gateway.get_order(order_id)["change_covered_by"] == ""


def test_known_bank_has_no_errors(gateway, order_id, bank_ids):
    wf = ChangeWorkflow.open(gateway, EDITOR, order_id, rate_currency="eur")
    _fill_company_mobile(wf, bank_ids["0102"])
    assert wf.bank_errors() == []
