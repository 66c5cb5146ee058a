from __future__ import annotations

import argparse
import logging
import sys

from PySide6.QtWidgets import QApplication

from .api import ApiError, BackofficeClient
from .config import load_settings
from .db import make_engine, make_session_factory
from .permissions import load_session_capabilities, session_for_roles
from .repository import init_db
from .services.change_workflow import ChangeWorkflow, load_pending_changes
from .services.local_gateway import LocalGateway
from .ui.change_dialog import ChangeDialog

logger = logging.getLogger("order_change")


def _parse_args(argv=None):
    p = argparse.ArgumentParser(prog="order_change", description="Pagos y vuelto de pedidos")
    p.add_argument("--order", type=int, help="ID de la orden a abrir")
    p.add_argument("--pending", action="store_true", help="Listar vueltos pendientes de comprobante")
    p.add_argument("--remote", action="store_true", help="Usar el backend (BACKOFFICE_API_URL) en lugar de la BD local")
    p.add_argument("--user", help="Usuario local cuyos roles definen los permisos")
    p.add_argument("--role", action="append", default=[], help="Rol de la sesión en modo remoto (repetible)")
    p.add_argument("--rate", help="Tasa BCV a usar en modo local (Bs por divisa)")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings()

    if args.remote:
        gateway = BackofficeClient(settings=settings)
        caps = session_for_roles(args.user, args.role, settings.edit_roles)
    else:
        engine = make_engine()
        init_db(engine, seed=True)
        session_factory = make_session_factory(engine)
        rates = {settings.rate_currency: args.rate} if args.rate else None
        gateway = LocalGateway(session_factory, rates=rates)
        caps = load_session_capabilities(session_factory, args.user)

    if args.pending:
        for o in load_pending_changes(gateway):
            print(f"{o.order_number or o.id}\t{o.change_amount}\t{o.change_covered_by.label}")
        return 0

    if args.order is None:
        logger.error("Indique --order ID o --pending")
        return 2

    app = QApplication.instance() or QApplication(sys.argv)
    try:
        wf = ChangeWorkflow.open(gateway, caps, args.order, rate_currency=settings.rate_currency)
    except ApiError as e:
        logger.error("No se pudo abrir la orden %s: %s", args.order, e)
        return 1
    dlg = ChangeDialog(wf)
    dlg.show()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
