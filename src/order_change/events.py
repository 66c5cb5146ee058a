from PySide6.QtCore import QObject, Signal


class _AppEvents(QObject):
    notification = Signal(str, str)    # level (success|info|warning|error), message
    payments_saved = Signal(int)       # order_id
    change_saved = Signal(int)         # order_id
    receipt_uploaded = Signal(int)     # order_id
    pending_changes_updated = Signal()  # refrescar listado de vueltos pendientes

events = _AppEvents()
