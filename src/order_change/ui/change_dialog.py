from PySide6.QtWidgets import (
    QDialog, QVBoxLayout, QHBoxLayout, QFormLayout, QLabel, QLineEdit,
    QPushButton, QRadioButton, QButtonGroup, QGroupBox, QComboBox, QWidget,
    QFileDialog, QApplication, QDialogButtonBox
)

from ..events import events
from ..methods import (
    AGENCY_CHANGE_METHODS, COMPANY_CHANGE_METHODS, ChangeCoveredBy, PaymentMethod
)
from ..money import fmt_money
from ..settlement import (
    FIELD_LABELS, PHONE_PREFIXES, BankTransferDetail, EmailReceiverDetail,
    MobilePaymentDetail, detail_warnings
)

_LEVEL_COLORS = {
    "success": "#2e7d32",
    "info": "#1565c0",
    "warning": "#ef6c00",
    "error": "#c62828",
}


class PaymentRowWidget(QWidget):
    def __init__(self, index: int, row, parent=None):
        super().__init__(parent)
        self.index = index
        layout = QHBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        self.cb_method = QComboBox()
        self.cb_method.addItem("Método...", "")
        for m in PaymentMethod:
            self.cb_method.addItem(m.label, m.value)
        pos = self.cb_method.findData(row.method)
        self.cb_method.setCurrentIndex(pos if pos >= 0 else 0)

        self.edt_amount = QLineEdit(row.amount)
        self.edt_amount.setPlaceholderText("Monto $")
        self.lbl_bs = QLabel("")
        self.lbl_bs.setStyleSheet("color: gray;")
        self.btn_remove = QPushButton("✕")
        self.btn_remove.setFixedWidth(28)

        layout.addWidget(self.cb_method, 3)
        layout.addWidget(self.edt_amount, 2)
        layout.addWidget(self.lbl_bs, 2)
        layout.addWidget(self.btn_remove)


class ChangeDialog(QDialog):
    """Pagos y vuelto de una orden. Solo presentación: la lógica vive en el workflow."""

    def __init__(self, workflow, parent=None):
        super().__init__(parent)
        self.wf = workflow
        self.setWindowTitle(f"Pagos y Vuelto - Orden {workflow.order.order_number or workflow.order.id}")
        self.resize(620, 720)
        self.row_widgets: list[PaymentRowWidget] = []
        self._init_ui()
        events.notification.connect(self._show_notification)
        self._rebuild_rows()
        self._refresh()

    def _init_ui(self):
        layout = QVBoxLayout(self)
        can_edit = self.wf.capabilities.can_edit

        # --- Pagos ---
        grp_pay = QGroupBox("Pagos y Comprobantes")
        v_pay = QVBoxLayout(grp_pay)
        self.lbl_summary = QLabel("")
        v_pay.addWidget(self.lbl_summary)
        self.rows_container = QWidget()
        self.rows_layout = QVBoxLayout(self.rows_container)
        self.rows_layout.setContentsMargins(0, 0, 0, 0)
        v_pay.addWidget(self.rows_container)

        h_btns = QHBoxLayout()
        self.btn_add_row = QPushButton("+ Agregar pago")
        self.btn_add_row.clicked.connect(self._on_add_row)
        self.btn_save_payments = QPushButton("Guardar pagos")
        self.btn_save_payments.clicked.connect(self._on_save_payments)
        h_btns.addWidget(self.btn_add_row)
        h_btns.addStretch()
        h_btns.addWidget(self.btn_save_payments)
        v_pay.addLayout(h_btns)

        # Pago mixto
        h_mixed = QHBoxLayout()
        self.edt_mixed_usd = QLineEdit()
        self.edt_mixed_usd.setPlaceholderText("Divisa $")
        self.edt_mixed_discount = QLineEdit()
        self.edt_mixed_discount.setPlaceholderText("Desc. %")
        self.btn_mixed = QPushButton("Pago mixto")
        self.btn_mixed.clicked.connect(self._on_mixed_payment)
        h_mixed.addWidget(self.edt_mixed_usd)
        h_mixed.addWidget(self.edt_mixed_discount)
        h_mixed.addWidget(self.btn_mixed)
        v_pay.addLayout(h_mixed)

        for w in (self.btn_add_row, self.btn_save_payments, self.btn_mixed):
            w.setEnabled(can_edit)
        layout.addWidget(grp_pay)

        # --- Vuelto ---
        self.grp_change = QGroupBox("Gestión de Vuelto")
        v_change = QVBoxLayout(self.grp_change)
        self.lbl_change = QLabel("")
        self.lbl_change.setStyleSheet("font-size: 16px; font-weight: bold;")
        self.lbl_change_bs = QLabel("")
        self.lbl_rate = QLabel("")
        v_change.addWidget(self.lbl_change)
        v_change.addWidget(self.lbl_change_bs)
        v_change.addWidget(self.lbl_rate)

        h_covered = QHBoxLayout()
        self.grp_covered = QButtonGroup(self)
        self.rb_covered: dict[ChangeCoveredBy, QRadioButton] = {}
        for cov in (ChangeCoveredBy.COMPANY, ChangeCoveredBy.AGENCY, ChangeCoveredBy.PARTIAL):
            rb = QRadioButton(cov.label)
            rb.setEnabled(can_edit)
            rb.toggled.connect(lambda checked, c=cov: checked and self._on_covered(c))
            self.grp_covered.addButton(rb)
            self.rb_covered[cov] = rb
            h_covered.addWidget(rb)
        v_change.addLayout(h_covered)

        form = QFormLayout()
        self.form_change = form
        self.edt_amount_company = QLineEdit()
        self.edt_amount_agency = QLineEdit()
        self.cb_method_company = QComboBox()
        self.cb_method_company.addItem("Seleccione...", "")
        for m in COMPANY_CHANGE_METHODS:
            self.cb_method_company.addItem(m.label, m.value)
        self.cb_method_agency = QComboBox()
        self.cb_method_agency.addItem("Seleccione...", "")
        for m in AGENCY_CHANGE_METHODS:
            self.cb_method_agency.addItem(m.label, m.value)
        form.addRow("Monto empresa:", self.edt_amount_company)
        form.addRow("Método empresa:", self.cb_method_company)
        form.addRow("Monto agencia:", self.edt_amount_agency)
        form.addRow("Método agencia:", self.cb_method_agency)
        v_change.addLayout(form)

        self.edt_amount_company.textEdited.connect(lambda t: self._on_field("change_amount_company", t))
        self.edt_amount_agency.textEdited.connect(lambda t: self._on_field("change_amount_agency", t))
        self.cb_method_company.activated.connect(
            lambda _i: self._on_field("change_method_company", self.cb_method_company.currentData())
        )
        self.cb_method_agency.activated.connect(
            lambda _i: self._on_field("change_method_agency", self.cb_method_agency.currentData())
        )
        for w in (self.edt_amount_company, self.edt_amount_agency, self.cb_method_company, self.cb_method_agency):
            w.setEnabled(can_edit)

        # Datos del cliente (dependen del método de la empresa)
        self.grp_details = QGroupBox("Datos del cliente")
        self.form_details = QFormLayout(self.grp_details)
        self.edt_cedula = QLineEdit()
        self.cb_bank = QComboBox()
        self.cb_prefix = QComboBox()
        self.cb_prefix.addItem("Prefijo", "")
        for p in PHONE_PREFIXES:
            self.cb_prefix.addItem(p, p)
        self.edt_phone = QLineEdit()
        self.edt_phone.setMaxLength(7)
        self.edt_account = QLineEdit()
        self.edt_email = QLineEdit()
        self.detail_widgets = {
            "cedula": self.edt_cedula,
            "bank_id": self.cb_bank,
            "phone_prefix": self.cb_prefix,
            "phone_number": self.edt_phone,
            "account_number": self.edt_account,
            "email": self.edt_email,
        }
        for name, w in self.detail_widgets.items():
            self.form_details.addRow(f"{FIELD_LABELS[name]}:", w)
            w.setEnabled(can_edit)
        for name in ("cedula", "phone_number", "account_number", "email"):
            self.detail_widgets[name].textEdited.connect(lambda t, n=name: self._on_detail(n, t))
        self.cb_bank.activated.connect(lambda _i: self._on_detail("bank_id", self.cb_bank.currentData()))
        self.cb_prefix.activated.connect(lambda _i: self._on_detail("phone_prefix", self.cb_prefix.currentData()))
        self.btn_copy = QPushButton("Copiar datos")
        self.btn_copy.clicked.connect(self._on_copy)
        self.form_details.addRow(self.btn_copy)
        v_change.addWidget(self.grp_details)

        self.lbl_errors = QLabel("")
        self.lbl_errors.setStyleSheet("color: #c62828;")
        self.lbl_errors.setWordWrap(True)
        v_change.addWidget(self.lbl_errors)

        h_actions = QHBoxLayout()
        self.btn_receipt = QPushButton("Subir comprobante de vuelto")
        self.btn_receipt.clicked.connect(self._on_upload_receipt)
        self.btn_save_change = QPushButton("Guardar vuelto")
        self.btn_save_change.clicked.connect(self._on_save_change)
        h_actions.addWidget(self.btn_receipt)
        h_actions.addStretch()
        h_actions.addWidget(self.btn_save_change)
        v_change.addLayout(h_actions)
        layout.addWidget(self.grp_change)

        self.lbl_status = QLabel("")
        self.lbl_status.setWordWrap(True)
        layout.addWidget(self.lbl_status)

        btns = QDialogButtonBox(QDialogButtonBox.StandardButton.Close)
        btns.rejected.connect(self.reject)
        layout.addWidget(btns)

    # --- Filas de pago ---
    def _rebuild_rows(self):
        for w in self.row_widgets:
            self.rows_layout.removeWidget(w)
            w.deleteLater()
        self.row_widgets = []
        can_edit = self.wf.capabilities.can_edit
        for i, row in enumerate(self.wf.ledger.rows):
            w = PaymentRowWidget(i, row)
            w.cb_method.activated.connect(lambda _i, idx=i, wd=w: self._on_row("method", idx, wd.cb_method.currentData()))
            w.edt_amount.textEdited.connect(lambda t, idx=i: self._on_row("amount", idx, t))
            w.btn_remove.clicked.connect(lambda _c=False, idx=i: self._on_remove_row(idx))
            for child in (w.cb_method, w.edt_amount, w.btn_remove):
                child.setEnabled(can_edit)
            self.rows_layout.addWidget(w)
            self.row_widgets.append(w)

    def _on_add_row(self):
        self.wf.ledger.add_row()
        self._rebuild_rows()
        self._refresh()

    def _on_remove_row(self, index):
        self.wf.ledger.remove_row(index)
        self._rebuild_rows()
        self._refresh()

    def _on_row(self, field, index, value):
        self.wf.ledger.update_row(index, field, value)
        self._refresh()

    def _on_save_payments(self):
        self.wf.save_payments()
        self._refresh()

    def _on_mixed_payment(self):
        result = self.wf.apply_mixed_payment(self.edt_mixed_usd.text(), self.edt_mixed_discount.text() or "0")
        if result is not None:
            self._rebuild_rows()
        self._refresh()

    # --- Vuelto ---
    def _on_covered(self, covered):
        self.wf.choose_responsibility(covered)
        self._refresh()

    def _on_field(self, name, value):
        self.wf.edit_field(name, value)
        self._refresh()

    def _on_detail(self, name, value):
        self.wf.edit_detail(name, value)
        self._refresh()

    def _on_copy(self):
        text = self.wf.copy_text()
        if not text:
            return
        QApplication.clipboard().setText(text)
        self._show_notification("info", "Datos copiados al portapapeles 📋")

    def _on_save_change(self):
        self.wf.save_change()
        self._refresh()

    def _on_upload_receipt(self):
        path, _ = QFileDialog.getOpenFileName(self, "Comprobante de vuelto", "", "Imágenes/PDF (*.png *.jpg *.jpeg *.pdf)")
        if not path:
            return
        self.wf.upload_change_receipt(path)
        self._refresh()

    def _show_notification(self, level, message):
        color = _LEVEL_COLORS.get(level, "black")
        self.lbl_status.setStyleSheet(f"color: {color};")
        self.lbl_status.setText(message)

    # --- Refresco ---
    def _refresh(self):
        st = self.wf.state
        form = st.form
        order = st.order

        self.lbl_summary.setText(self.wf.ledger.summary(order.current_total_price).text())
        for i, w in enumerate(self.row_widgets):
            bs = self.wf.ledger.bolivar_equivalent(i, self.wf.converter.rate)
            w.lbl_bs.setText(fmt_money(bs, "VES") if bs is not None else "")
            errors = self.wf.ledger.row_errors(i)
            w.edt_amount.setToolTip(errors.get("amount", ""))
            w.cb_method.setToolTip(errors.get("method", ""))

        self.grp_change.setVisible(st.is_visible)
        self.lbl_change.setText(f"Vuelto: {fmt_money(st.change_amount)}")
        self.lbl_change_bs.setText(f"Equivalente: Bs. {st.change_in_bolivares}")
        rate_txt = f"{form.change_rate:.2f}" if form.change_rate > 0 else self.wf.converter.display_rate()
        self.lbl_rate.setText(f"Tasa: {rate_txt} Bs/$")

        for cov, rb in self.rb_covered.items():
            rb.blockSignals(True)
            rb.setChecked(form.change_covered_by is cov)
            rb.blockSignals(False)

        involves_company = form.change_covered_by.involves_company
        involves_agency = form.change_covered_by.involves_agency
        partial = form.change_covered_by is ChangeCoveredBy.PARTIAL
        self._set_text(self.edt_amount_company, form.change_amount_company)
        self._set_text(self.edt_amount_agency, form.change_amount_agency)
        self._set_combo(self.cb_method_company, form.change_method_company.value if form.change_method_company else "")
        self._set_combo(self.cb_method_agency, form.change_method_agency.value if form.change_method_agency else "")
        self._show_row(self.form_change, self.edt_amount_company, partial)
        self._show_row(self.form_change, self.edt_amount_agency, partial)
        self._show_row(self.form_change, self.cb_method_company, involves_company)
        self._show_row(self.form_change, self.cb_method_agency, involves_agency)

        self._refresh_details(st)

        errors = st.validation_errors() if st.can_edit and form.change_covered_by is not ChangeCoveredBy.NONE else []
        if st.can_edit and involves_company:
            errors += detail_warnings(st.detail, self.wf.banks)
        self.lbl_errors.setText("\n".join(errors))
        self.btn_save_change.setEnabled(not st.save_disabled and not self.wf.bank_errors())
        self.btn_save_change.setVisible(st.can_edit)
        self.btn_receipt.setVisible(st.can_upload_receipt)
        self.btn_receipt.setText("Reemplazar comprobante" if st.receipt else "Subir comprobante de vuelto")

    def _refresh_details(self, st):
        detail = st.detail
        show = st.form.change_covered_by.involves_company
        visible_fields = set()
        if isinstance(detail, MobilePaymentDetail):
            visible_fields = {"cedula", "bank_id", "phone_prefix", "phone_number"}
        elif isinstance(detail, BankTransferDetail):
            visible_fields = {"account_number", "cedula", "bank_id"}
        elif isinstance(detail, EmailReceiverDetail):
            visible_fields = {"email"}
        self.grp_details.setVisible(show and bool(visible_fields))

        if "bank_id" in visible_fields and self.cb_bank.count() != len(self.wf.banks) + 1:
            self.cb_bank.blockSignals(True)
            self.cb_bank.clear()
            self.cb_bank.addItem("Seleccione banco...", "")
            for b in self.wf.banks:
                self.cb_bank.addItem(f"{b.code} - {b.name}" if b.code else b.name, b.id)
            self.cb_bank.blockSignals(False)

        for name, w in self.detail_widgets.items():
            visible = name in visible_fields
            self._show_row(self.form_details, w, visible)
            if not visible:
                continue
            value = getattr(detail, name)
            if isinstance(w, QLineEdit):
                self._set_text(w, value or "")
            else:
                self._set_combo(w, value if value is not None else "")

    @staticmethod
    def _show_row(form_layout, w, visible):
        w.setVisible(visible)
        label = form_layout.labelForField(w)
        if label is not None:
            label.setVisible(visible)

    @staticmethod
    def _set_text(w, text):
        if w.text() != text:
            w.blockSignals(True)
            w.setText(text)
            w.blockSignals(False)

    @staticmethod
    def _set_combo(cb, data):
        pos = cb.findData(data)
        if pos < 0:
            pos = 0
        if cb.currentIndex() != pos:
            cb.blockSignals(True)
            cb.setCurrentIndex(pos)
            cb.blockSignals(False)
