"""
Flujo de trabajo del vuelto de una orden.

Conecta el motor (ledger, calculadora, asignación) con un gateway (HTTP o BD
local). Cada acción de red tiene su propia bandera "en curso": no se permite
lanzar la misma acción dos veces a la vez, pero sí editar mientras tanto.
Los errores nunca son fatales: se conserva el estado y se notifica.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol, Sequence

from ..allocator import (
    AllocatorState,
    ChangeAllocator,
    DetailEdited,
    FieldEdited,
    OrderChanged,
    PaymentsChanged,
    RateFetched,
    ReceiptAttached,
    ResponsibilityChosen,
    SaveFailed,
    SaveRequested,
    SaveSucceeded,
)
from ..api import ApiError, ServerRejection, TransportError
from ..events import events
from ..exchange import CurrencyConverter
from ..ledger import Payment, PaymentLedger, payments_form_fields, payments_with_rate
from ..methods import ChangeCoveredBy
from ..permissions import Capability, SessionCapabilities
from ..settlement import BankInfo, bank_reference_errors, format_details_for_copy
from ..snapshot import OrderSnapshot
from ..solver import MixedPaymentInputError, MixedPaymentResult, apply_mixed_payment, discount_from_percent

logger = logging.getLogger(__name__)


class Gateway(Protocol):
    def get_banks(self) -> list[dict]: ...
    def get_currency(self) -> dict: ...
    def get_order(self, order_id: int) -> dict: ...
    def list_pending_changes(self) -> list[dict]: ...
    def save_payments(self, order_id: int, form_fields: Sequence[tuple[str, str]]) -> None: ...
    def save_change(self, order_id: int, form_fields: Sequence[tuple[str, str]]) -> None: ...
    def upload_change_receipt(self, order_id: int, file_path: Path | str) -> dict: ...
    def upload_payment_receipt(self, order_id: int, file_path: Path | str) -> dict: ...
    def delete_payment_receipt(self, order_id: int, receipt_id: int) -> None: ...


class InFlightGuard:
    """Una bandera por acción: como mucho una petición en curso por acción."""

    def __init__(self) -> None:
        self._active: set[str] = set()

    def busy(self, action: str) -> bool:
        return action in self._active

    @contextmanager
    def hold(self, action: str) -> Iterator[bool]:
        """Entrega True si se tomó la bandera; False si la acción ya estaba en curso."""
        if action in self._active:
            yield False
            return
        self._active.add(action)
        try:
            yield True
        finally:
            self._active.discard(action)


def notify(level: str, message: str) -> None:
    events.notification.emit(level, message)


def _report(e: ApiError, default: str) -> None:
    if isinstance(e, TransportError):
        notify("error", "Error de conexión")
    elif isinstance(e, ServerRejection):
        notify("error", e.message or default)
    else:
        notify("error", default)


class ChangeWorkflow:
    def __init__(
        self,
        gateway: Gateway,
        capabilities: SessionCapabilities,
        order: OrderSnapshot | dict,
        *,
        rate_currency: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self.capabilities = capabilities
        self.guard = InFlightGuard()
        self.banks: list[BankInfo] = []
        self._payments_ok = False
        snapshot = order if isinstance(order, OrderSnapshot) else OrderSnapshot.from_dict(order)
        self.allocator = ChangeAllocator(snapshot, can_edit=capabilities.can_edit, payments=snapshot.payments)
        self.ledger = PaymentLedger(
            snapshot.payments,
            on_change=self._on_payments_changed,
            on_save=self._on_payments_saved,
        )
        self.converter = CurrencyConverter(
            gateway.get_currency,
            persisted_rate=snapshot.change_rate,
            currency=rate_currency,
        )

    @classmethod
    def open(cls, gateway: Gateway, capabilities: SessionCapabilities, order_id: int, **kwargs: Any) -> "ChangeWorkflow":
        """Carga la orden, los bancos y la tasa (si hace falta)."""
        data = gateway.get_order(order_id)
        wf = cls(gateway, capabilities, data, **kwargs)
        wf.load_banks()
        wf.fetch_rate()
        return wf

    # --- Estado ---
    @property
    def state(self) -> AllocatorState:
        return self.allocator.state

    @property
    def order(self) -> OrderSnapshot:
        return self.state.order

    def _on_payments_changed(self, payments: list[Payment]) -> None:
        self.allocator.dispatch(PaymentsChanged(tuple(payments)))

    # --- Lecturas ---
    def load_banks(self) -> list[BankInfo]:
        with self.guard.hold("banks") as acquired:
            if not acquired:
                return self.banks
            try:
                raw = self.gateway.get_banks()
            except ApiError as e:
                logger.warning("No se pudieron cargar los bancos: %s", e)
                return self.banks
            self.banks = [BankInfo.from_dict(b) for b in raw]
        return self.banks

    def fetch_rate(self) -> Decimal:
        """Consulta la tasa una vez si la orden no tiene tasa guardada."""
        with self.guard.hold("rate") as acquired:
            if not acquired:
                return self.converter.rate
            rate = self.converter.ensure_rate()
        if rate > 0:
            self.allocator.dispatch(RateFetched(rate))
        return rate

    def reload_order(self) -> Optional[OrderSnapshot]:
        with self.guard.hold("order") as acquired:
            if not acquired:
                return None
            try:
                data = self.gateway.get_order(self.order.id)
            except ApiError as e:
                _report(e, "Error al recargar la orden")
                return None
        snapshot = OrderSnapshot.from_dict(data)
        self.allocator.dispatch(OrderChanged(snapshot))
        return snapshot

    # --- Edición ---
    def edit_field(self, name: str, value: Any) -> AllocatorState:
        return self.allocator.dispatch(FieldEdited(name, value))

    def edit_detail(self, name: str, value: Any) -> AllocatorState:
        return self.allocator.dispatch(DetailEdited(name, value))

    def choose_responsibility(self, covered_by: ChangeCoveredBy | str) -> AllocatorState:
        return self.allocator.dispatch(ResponsibilityChosen(covered_by))

    def apply_mixed_payment(self, mp: Any, discount_percent: Any) -> Optional[MixedPaymentResult]:
        """Reemplaza las filas por divisa + resto en Bs. Entradas inválidas: aviso y sin cambios."""
        if not self.capabilities.has(Capability.EDIT_PAYMENTS):
            notify("warning", "No tiene permisos para modificar pagos")
            return None
        rate = self.converter.rate if self.converter.has_rate else self.fetch_rate()
        try:
            d = discount_from_percent(discount_percent)
            return apply_mixed_payment(self.ledger, mp, d, rate, self.order.current_total_price)
        except MixedPaymentInputError as e:
            notify("warning", str(e))
            return None

    def copy_text(self) -> str:
        form = self.state.form
        return format_details_for_copy(form.change_method_company, self.state.detail, self.banks)

    def bank_errors(self) -> list[str]:
        """Banco de los datos del cliente inexistente o inactivo según el listado cargado."""
        if not self.banks or not self.state.form.change_covered_by.involves_company:
            return []
        return bank_reference_errors(self.state.detail, self.banks)

    # --- Pagos ---
    def save_payments(self) -> bool:
        """Acción "Guardar" del ledger."""
        if not self.capabilities.has(Capability.EDIT_PAYMENTS):
            notify("warning", "No tiene permisos para modificar pagos")
            return False
        if self.guard.busy("payments"):
            return False
        if not self.ledger.save():
            notify("warning", "Revise los pagos: método y monto son obligatorios")
            return False
        return self._payments_ok

    def _on_payments_saved(self, payments: list[Payment]) -> None:
        self._payments_ok = False
        with self.guard.hold("payments") as acquired:
            if not acquired:
                return
            body = payments_form_fields(payments_with_rate(payments, self.converter.rate))
            try:
                self.gateway.save_payments(self.order.id, body)
            except ApiError as e:
                _report(e, "Error al guardar")
                return
        self._payments_ok = True
        notify("success", "Pagos guardados")
        events.payments_saved.emit(self.order.id)
        self.reload_order()

    # --- Vuelto ---
    def save_change(self) -> bool:
        if self.guard.busy("change"):
            return False
        if not self.state.save_disabled:
            errors = self.bank_errors()
            if errors:
                notify("warning", errors[0])
                return False
        state = self.allocator.dispatch(SaveRequested())
        if not state.saving:
            if state.last_error:
                notify("warning", state.last_error)
            return False
        with self.guard.hold("change"):
            try:
                self.gateway.save_change(self.order.id, state.to_form_fields())
            except ApiError as e:
                msg = e.message if isinstance(e, ServerRejection) else "Error de conexión"
                self.allocator.dispatch(SaveFailed(msg))
                _report(e, "Error al actualizar el vuelto")
                return False
            try:
                fresh: Optional[OrderSnapshot] = OrderSnapshot.from_dict(self.gateway.get_order(self.order.id))
            except ApiError as e:
                logger.warning("Vuelto guardado pero no se pudo recargar la orden: %s", e)
                fresh = None
        self.allocator.dispatch(SaveSucceeded(fresh))
        notify("success", "Vuelto actualizado correctamente")
        events.change_saved.emit(self.order.id)
        events.pending_changes_updated.emit()
        return True

    def upload_change_receipt(self, file_path: Path | str) -> bool:
        if not self.state.can_upload_receipt:
            notify("warning", "El comprobante solo aplica a vueltos a cargo de la empresa")
            return False
        with self.guard.hold("change_receipt") as acquired:
            if not acquired:
                return False
            try:
                body = self.gateway.upload_change_receipt(self.order.id, file_path)
            except ApiError as e:
                _report(e, "Error al subir comprobante")
                return False
        path = str(body.get("change_receipt") or Path(file_path).name)
        self.allocator.dispatch(ReceiptAttached(path))
        notify("success", "Comprobante de vuelto subido")
        events.receipt_uploaded.emit(self.order.id)
        events.pending_changes_updated.emit()
        return True

    # --- Comprobantes de pago ---
    def upload_payment_receipt(self, file_path: Path | str) -> bool:
        if not self.capabilities.has(Capability.UPLOAD_RECEIPTS):
            notify("warning", "No tiene permisos para subir comprobantes")
            return False
        with self.guard.hold("payment_receipt") as acquired:
            if not acquired:
                return False
            try:
                self.gateway.upload_payment_receipt(self.order.id, file_path)
            except ApiError as e:
                _report(e, "Error al subir")
                return False
        notify("success", "Comprobante subido")
        self.reload_order()
        return True

    def delete_payment_receipt(self, receipt_id: int) -> bool:
        if not self.capabilities.has(Capability.UPLOAD_RECEIPTS):
            notify("warning", "No tiene permisos para eliminar comprobantes")
            return False
        with self.guard.hold("delete_receipt") as acquired:
            if not acquired:
                return False
            try:
                self.gateway.delete_payment_receipt(self.order.id, receipt_id)
            except ApiError as e:
                _report(e, "Error al eliminar comprobante")
                return False
        notify("success", "Comprobante eliminado")
        self.reload_order()
        return True


def load_pending_changes(gateway: Gateway) -> list[OrderSnapshot]:
    """Órdenes con vuelto de la empresa pendiente de comprobante."""
    try:
        raw = gateway.list_pending_changes()
    except ApiError as e:
        _report(e, "Error al cargar vueltos pendientes")
        return []
    return [OrderSnapshot.from_dict(o) for o in raw]
