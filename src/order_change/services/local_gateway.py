"""
Gateway local: mismo contrato que ``BackofficeClient`` pero contra la BD
SQLAlchemy. Se usa en modo escritorio (sin backend) y en las pruebas.
"""

from __future__ import annotations

import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from .. import repository as repo
from ..api import ServerRejection
from ..config import get_data_dir
from ..ledger import Payment

logger = logging.getLogger(__name__)

_PAYMENT_KEY = re.compile(r"^payments\[(\d+)\]\[(method|amount|rate)\]$")


def parse_payment_fields(form_fields: Iterable[tuple[str, str]]) -> list[Payment]:
    """Reconstruye la lista de pagos desde ``payments[i][method|amount|rate]``."""
    rows: dict[int, dict[str, str]] = {}
    for key, value in form_fields:
        m = _PAYMENT_KEY.match(key)
        if not m:
            continue
        rows.setdefault(int(m.group(1)), {})[m.group(2)] = value
    payments: list[Payment] = []
    for idx in sorted(rows):
        p = Payment.from_dict(rows[idx])
        if p is None:
            raise ServerRejection(422, f"Pago {idx + 1} inválido")
        payments.append(p)
    return payments


class LocalGateway:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        rates: Optional[Mapping[str, Any]] = None,
        receipts_dir: Optional[Path] = None,
    ) -> None:
        self.session_factory = session_factory
        self.rates = dict(rates or {})
        self._receipts_dir = receipts_dir

    @property
    def receipts_dir(self) -> Path:
        d = self._receipts_dir or (get_data_dir() / "receipts")
        d.mkdir(parents=True, exist_ok=True)
        return d

    # --- Lecturas ---
    def get_banks(self) -> list[dict]:
        with self.session_factory() as session:
            return [repo.bank_to_dict(b) for b in repo.list_banks(session)]

    def get_currency(self) -> dict:
        data = {}
        for currency, value in self.rates.items():
            data[f"bcv_{currency.lower()}"] = {"value": str(value)}
        return {"data": data}

    def get_order(self, order_id: int) -> dict:
        with self.session_factory() as session:
            data = repo.get_order_dict(session, order_id)
        if data is None:
            raise ServerRejection(404, f"Orden {order_id} no encontrada")
        return data

    def list_pending_changes(self) -> list[dict]:
        with self.session_factory() as session:
            return [repo.order_to_dict(o) for o in repo.list_pending_changes(session)]

    # --- Escrituras ---
    def save_payments(self, order_id: int, form_fields: Sequence[tuple[str, str]]) -> None:
        payments = parse_payment_fields(form_fields)
        with self.session_factory() as session:
            try:
                repo.replace_order_payments(session, order_id, payments)
            except ValueError as e:
                raise ServerRejection(404, str(e)) from e
        logger.info("Pagos de la orden %s guardados (%d)", order_id, len(payments))

    def save_change(self, order_id: int, form_fields: Iterable[tuple[str, str]]) -> None:
        form = {k: v for k, v in form_fields if k != "_method"}
        with self.session_factory() as session:
            try:
                repo.save_order_change(session, order_id, form)
            except ValueError as e:
                raise ServerRejection(404, str(e)) from e
        logger.info("Vuelto de la orden %s guardado (%s)", order_id, form.get("change_covered_by") or "-")

    def _store_file(self, order_id: int, prefix: str, file_path: Path | str) -> str:
        src = Path(file_path)
        if not src.exists():
            raise ServerRejection(422, f"Archivo no encontrado: {src.name}")
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        dest_dir = self.receipts_dir / str(order_id)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / f"{prefix}_{stamp}{src.suffix}"
        shutil.copy2(src, dest)
        return dest.as_posix()

    def upload_change_receipt(self, order_id: int, file_path: Path | str) -> dict:
        path = self._store_file(order_id, "change_receipt", file_path)
        with self.session_factory() as session:
            try:
                repo.set_change_receipt(session, order_id, path)
            except ValueError as e:
                raise ServerRejection(404, str(e)) from e
        return {"change_receipt": path}

    def upload_payment_receipt(self, order_id: int, file_path: Path | str) -> dict:
        path = self._store_file(order_id, "payment_receipt", file_path)
        with self.session_factory() as session:
            try:
                receipt = repo.add_payment_receipt(session, order_id, path)
            except ValueError as e:
                raise ServerRejection(404, str(e)) from e
            return {"id": receipt.id, "path": receipt.path}

    def delete_payment_receipt(self, order_id: int, receipt_id: int) -> None:
        with self.session_factory() as session:
            if not repo.delete_payment_receipt(session, order_id, receipt_id):
                raise ServerRejection(404, "Comprobante no encontrado")
