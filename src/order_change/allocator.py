"""
Asignación del vuelto (quién lo paga, cuánto y por qué medio).

Todo el estado de trabajo vive en ``AllocatorState`` y solo cambia a través de
``reduce(state, event)``: una pasada determinista por evento. Los valores
derivados (suma parcial correcta, método seleccionado, guardado habilitado...)
se calculan a partir del estado, nunca se almacenan.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .calculator import compute_change, effective_payments, live_change, should_show_change
from .ledger import Payment
from .methods import ChangeCoveredBy, PaymentMethod, parse_agency_method, parse_covered_by, parse_method
from .money import SUM_TOLERANCE, ZERO, fmt_number_es, money_str, parse_amount, quantize
from .settlement import (
    FIELD_LABELS,
    SettlementDetail,
    detail_from_payload,
    is_complete_for,
    mask_field,
    missing_fields,
    to_payload,
)
from .snapshot import OrderSnapshot

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "change_amount_company",
    "change_amount_agency",
    "change_method_company",
    "change_method_agency",
)


class Phase(str, Enum):
    NONE = "none"
    PENDING = "pending"
    COMPANY = "company"
    AGENCY = "agency"
    PARTIAL = "partial"
    READY = "ready"
    SAVED = "saved"
    RECEIPT_ATTACHED = "receipt_attached"


# --- Eventos ---

@dataclass(frozen=True)
class OrderChanged:
    order: OrderSnapshot


@dataclass(frozen=True)
class PaymentsChanged:
    payments: tuple[Payment, ...]


@dataclass(frozen=True)
class RateFetched:
    rate: Decimal


@dataclass(frozen=True)
class FieldEdited:
    name: str
    value: Any


@dataclass(frozen=True)
class DetailEdited:
    name: str
    value: Any


@dataclass(frozen=True)
class ResponsibilityChosen:
    covered_by: ChangeCoveredBy


@dataclass(frozen=True)
class SaveRequested:
    pass


@dataclass(frozen=True)
class SaveSucceeded:
    order: Optional[OrderSnapshot] = None


@dataclass(frozen=True)
class SaveFailed:
    message: str


@dataclass(frozen=True)
class ReceiptAttached:
    path: str


Event = Union[
    OrderChanged,
    PaymentsChanged,
    RateFetched,
    FieldEdited,
    DetailEdited,
    ResponsibilityChosen,
    SaveRequested,
    SaveSucceeded,
    SaveFailed,
    ReceiptAttached,
]


# --- Estado ---

@dataclass(frozen=True)
class ChangeForm:
    """Campos del formulario de vuelto tal como se envían al backend."""

    cash_received: str = ""
    change_amount: str = ""
    change_covered_by: ChangeCoveredBy = ChangeCoveredBy.NONE
    change_amount_company: str = ""
    change_amount_agency: str = ""
    change_method_company: Optional[PaymentMethod] = None
    change_method_agency: Optional[PaymentMethod] = None
    change_rate: Decimal = ZERO
    change_payment_details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_order(cls, order: OrderSnapshot, fallback_rate: Decimal = ZERO) -> "ChangeForm":
        details = {}
        for k, v in order.change_payment_details.items():
            try:
                details[k] = mask_field(k, v)
            except KeyError:
                continue
        return cls(
            cash_received=order.cash_received,
            change_amount=order.change_amount,
            change_covered_by=order.change_covered_by,
            change_amount_company=order.change_amount_company,
            change_amount_agency=order.change_amount_agency,
            change_method_company=order.change_method_company,
            change_method_agency=order.change_method_agency,
            change_rate=order.change_rate if order.has_locked_rate else fallback_rate,
            change_payment_details=details,
        )


@dataclass(frozen=True)
class AllocatorState:
    order: OrderSnapshot
    form: ChangeForm
    can_edit: bool = False
    payments: tuple[Payment, ...] = ()
    saving: bool = False
    saved: bool = False
    receipt: Optional[str] = None
    last_error: Optional[str] = None

    # --- Derivados ---
    @property
    def change_amount(self) -> Decimal:
        return parse_amount(self.form.change_amount) or ZERO

    @property
    def detail(self) -> SettlementDetail:
        return detail_from_payload(self.form.change_method_company, self.form.change_payment_details)

    @property
    def is_sum_correct(self) -> bool:
        if self.form.change_covered_by is not ChangeCoveredBy.PARTIAL:
            return True
        company = parse_amount(self.form.change_amount_company) or ZERO
        agency = parse_amount(self.form.change_amount_agency) or ZERO
        return abs(company + agency - self.change_amount) < SUM_TOLERANCE

    @property
    def is_details_filled(self) -> bool:
        if self.form.change_covered_by is ChangeCoveredBy.AGENCY:
            return True
        return is_complete_for(self.form.change_method_company, self.form.change_payment_details)

    @property
    def is_method_selected(self) -> bool:
        covered = self.form.change_covered_by
        if covered is ChangeCoveredBy.COMPANY:
            return self.form.change_method_company is not None and self.is_details_filled
        if covered is ChangeCoveredBy.AGENCY:
            return self.form.change_method_agency is not None
        if covered is ChangeCoveredBy.PARTIAL:
            return (
                self.form.change_method_company is not None
                and self.form.change_method_agency is not None
                and self.is_details_filled
            )
        return False

    @property
    def is_ready(self) -> bool:
        return (
            self.is_sum_correct
            and self.is_method_selected
            and self.form.change_covered_by is not ChangeCoveredBy.NONE
        )

    @property
    def nothing_to_save(self) -> bool:
        """Sin vuelto y sin cambio en el efectivo recibido respecto a la orden."""
        return self.change_amount <= 0 and (
            parse_amount(self.form.cash_received) == parse_amount(self.order.cash_received)
        )

    @property
    def save_disabled(self) -> bool:
        return self.saving or not self.can_edit or not self.is_ready or self.nothing_to_save

    @property
    def can_upload_receipt(self) -> bool:
        return (
            self.can_edit
            and self.form.change_covered_by.involves_company
            and self.change_amount > 0
        )

    @property
    def current_change(self) -> Decimal:
        """Vuelto en vivo (con signo) usado por la regla de visibilidad."""
        payments = effective_payments(self.payments, self.order.payments)
        return live_change(payments, self.order.current_total_price)

    @property
    def is_visible(self) -> bool:
        return should_show_change(self.current_change, self.order.persisted_change_amount, self.can_edit)

    @property
    def phase(self) -> Phase:
        if self.change_amount <= 0:
            return Phase.NONE
        covered = self.form.change_covered_by
        if covered is ChangeCoveredBy.NONE:
            return Phase.PENDING
        if self.saved:
            if self.receipt and covered.involves_company:
                return Phase.RECEIPT_ATTACHED
            return Phase.SAVED
        if self.is_ready:
            return Phase.READY
        return {
            ChangeCoveredBy.COMPANY: Phase.COMPANY,
            ChangeCoveredBy.AGENCY: Phase.AGENCY,
            ChangeCoveredBy.PARTIAL: Phase.PARTIAL,
        }[covered]

    @property
    def change_in_bolivares(self) -> str:
        rate = self.form.change_rate
        if not rate or rate <= 0:
            return "N/A"
        return fmt_number_es(self.change_amount * rate)

    def validation_errors(self) -> list[str]:
        """Mensajes de validación local (los que bloquean el guardado)."""
        errors: list[str] = []
        form = self.form
        if not self.can_edit:
            errors.append("No tiene permisos para modificar el vuelto")
        if self.nothing_to_save:
            errors.append("No hay vuelto que registrar")
        if form.change_covered_by is ChangeCoveredBy.NONE:
            errors.append("Seleccione quién cubre el vuelto")
            return errors
        if form.change_covered_by.involves_company and form.change_method_company is None:
            errors.append("Seleccione el método de vuelto de la empresa")
        if form.change_covered_by.involves_agency and form.change_method_agency is None:
            errors.append("Seleccione el método de vuelto de la agencia")
        if form.change_covered_by.involves_company and form.change_method_company is not None:
            missing = missing_fields(self.detail)
            if missing:
                labels = ", ".join(FIELD_LABELS[m] for m in missing)
                errors.append(f"Faltan datos del cliente: {labels}")
        if not self.is_sum_correct:
            errors.append("La suma de los montos parciales debe ser igual al vuelto total")
        return errors

    def to_form_fields(self) -> list[tuple[str, str]]:
        """Cuerpo multipart de ``POST /orders/{id}/change``."""
        form = self.form
        return [
            ("_method", "PUT"),
            ("cash_received", _money_or_blank(form.cash_received)),
            ("change_amount", _money_or_blank(form.change_amount)),
            ("change_covered_by", form.change_covered_by.value),
            ("change_amount_company", _money_or_blank(form.change_amount_company)),
            ("change_amount_agency", _money_or_blank(form.change_amount_agency)),
            ("change_method_company", form.change_method_company.value if form.change_method_company else ""),
            ("change_method_agency", form.change_method_agency.value if form.change_method_agency else ""),
            ("change_rate", str(form.change_rate)),
            ("change_payment_details", json.dumps(to_payload(self.detail), sort_keys=True)),
        ]


def _money_or_blank(text: str) -> str:
    dec = parse_amount(text)
    return "" if dec is None else money_str(dec)


# --- Reducer ---

def initial_state(order: OrderSnapshot, can_edit: bool, payments: tuple[Payment, ...] = ()) -> AllocatorState:
    state = AllocatorState(order=order, form=ChangeForm.from_order(order), can_edit=can_edit)
    state = reduce(state, OrderChanged(order))
    if payments:
        state = reduce(state, PaymentsChanged(tuple(payments)))
    return state


def _recompute(state: AllocatorState) -> AllocatorState:
    """Recalcula efectivo recibido y vuelto desde los pagos en edición o, si no hay, los guardados.

    Sin pagos de ningún tipo se conservan los valores previos.
    """
    payments = effective_payments(state.payments, state.order.payments)
    if not payments:
        return state
    figures = compute_change(payments, state.order.current_total_price, state.form.cash_received)
    change_text = figures.change_text
    if figures.cash_received == state.form.cash_received and change_text == state.form.change_amount:
        return state
    form = replace(state.form, cash_received=figures.cash_received, change_amount=change_text)
    return replace(state, form=form, saved=False)


def _edited(state: AllocatorState, form: ChangeForm) -> AllocatorState:
    if form == state.form:
        return state
    return replace(state, form=form, saved=False, last_error=None)


def reduce(state: AllocatorState, event: Event) -> AllocatorState:
    """Aplica ``event`` y devuelve el nuevo estado (``state`` no se modifica)."""
    if isinstance(event, OrderChanged):
        order = event.order
        form = ChangeForm.from_order(order, fallback_rate=state.form.change_rate)
        new = replace(
            state,
            order=order,
            form=form,
            saved=order.change_covered_by is not ChangeCoveredBy.NONE,
            receipt=order.change_receipt,
            last_error=None,
        )
        return _recompute(new)

    if isinstance(event, PaymentsChanged):
        return _recompute(replace(state, payments=tuple(event.payments)))

    if isinstance(event, RateFetched):
        rate = parse_amount(event.rate)
        if state.order.has_locked_rate or rate is None or rate <= 0:
            return state
        return replace(state, form=replace(state.form, change_rate=rate))

    if isinstance(event, FieldEdited):
        if event.name not in EDITABLE_FIELDS:
            raise KeyError(f"Campo no editable: {event.name!r}")
        if not state.can_edit:
            return state
        if event.name == "change_method_company":
            value: Any = parse_method(event.value)
        elif event.name == "change_method_agency":
            value = parse_agency_method(event.value)
        else:
            value = "" if event.value is None else str(event.value)
        return _edited(state, replace(state.form, **{event.name: value}))

    if isinstance(event, DetailEdited):
        if not state.can_edit:
            return state
        details = dict(state.form.change_payment_details)
        details[event.name] = mask_field(event.name, event.value)
        return _edited(state, replace(state.form, change_payment_details=details))

    if isinstance(event, ResponsibilityChosen):
        if not state.can_edit:
            return state
        covered = parse_covered_by(event.covered_by)
        return _edited(state, replace(state.form, change_covered_by=covered))

    if isinstance(event, SaveRequested):
        if state.save_disabled:
            errors = state.validation_errors()
            msg = errors[0] if errors else None
            return replace(state, last_error=msg) if msg != state.last_error else state
        return replace(state, saving=True, last_error=None)

    if isinstance(event, SaveSucceeded):
        new = replace(state, saving=False, last_error=None)
        if event.order is not None:
            new = reduce(new, OrderChanged(event.order))
        return replace(new, saved=True)

    if isinstance(event, SaveFailed):
        return replace(state, saving=False, last_error=event.message)

    if isinstance(event, ReceiptAttached):
        return replace(state, receipt=event.path)

    raise TypeError(f"Evento no soportado: {type(event).__name__}")


class ChangeAllocator:
    """Contenedor mutable del estado; útil para la vista y el flujo de trabajo."""

    def __init__(self, order: OrderSnapshot, can_edit: bool, payments: tuple[Payment, ...] = ()) -> None:
        self.state = initial_state(order, can_edit, payments)

    def dispatch(self, event: Event) -> AllocatorState:
        before = self.state.phase
        self.state = reduce(self.state, event)
        after = self.state.phase
        if before is not after:
            logger.debug("Vuelto orden %s: %s -> %s (%s)", self.state.order.id, before.value, after.value, type(event).__name__)
        return self.state

    @property
    def form(self) -> ChangeForm:
        return self.state.form

    @property
    def change_amount_display(self) -> str:
        return money_str(quantize(self.state.change_amount))
