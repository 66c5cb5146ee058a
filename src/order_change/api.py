"""
Cliente HTTP del backend de pedidos (endpoints que usa el módulo de vueltos).

Todas las peticiones llevan ``Accept: application/json`` y el token Bearer.
Los errores de red se traducen a ``TransportError``; las respuestas no 2xx a
``ServerRejection`` con el ``message`` del cuerpo cuando existe.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

import requests

from .config import Settings, load_settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Error base del cliente del backend."""


class TransportError(ApiError):
    """No se pudo completar la petición (sin conexión, timeout, DNS...)."""

    def __init__(self, message: str = "Error de conexión") -> None:
        super().__init__(message)
        self.message = message


class ServerRejection(ApiError):
    """El backend respondió con un estado distinto de 2xx."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


def _message_from(resp: requests.Response, default: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return default
    if isinstance(body, Mapping) and body.get("message"):
        return str(body["message"])
    return default


class BackofficeClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or load_settings()
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.token = token if token is not None else settings.api_token
        self.timeout = timeout or settings.api_timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, *, error_message: str = "Error del servidor", **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s %s falló: %s", method, url, e)
            raise TransportError() from e
        if not 200 <= resp.status_code < 300:
            message = _message_from(resp, error_message)
            logger.error("%s %s -> %s (%s)", method, url, resp.status_code, message)
            raise ServerRejection(resp.status_code, message)
        return resp

    def _json(self, resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise ServerRejection(resp.status_code, "Respuesta inválida del servidor") from e

    # --- Lecturas ---
    def get_banks(self) -> list[dict]:
        data = self._json(self._request("GET", "/banks", error_message="Error al cargar bancos"))
        if isinstance(data, Mapping):
            data = data.get("data") or data.get("banks") or []
        return list(data)

    def get_currency(self) -> dict:
        data = self._json(self._request("GET", "/currency", error_message="Error al cargar la tasa"))
        return dict(data) if isinstance(data, Mapping) else {}

    def get_order(self, order_id: int) -> dict:
        data = self._json(self._request("GET", f"/orders/{order_id}", error_message="Orden no encontrada"))
        if isinstance(data, Mapping) and isinstance(data.get("order"), Mapping):
            return dict(data["order"])
        return dict(data)

    def list_pending_changes(self) -> list[dict]:
        data = self._json(
            self._request("GET", "/orders/pending-vueltos", error_message="Error al cargar vueltos pendientes")
        )
        if isinstance(data, Mapping):
            return list(data.get("orders") or [])
        return list(data or [])

    # --- Escrituras ---
    def save_payments(self, order_id: int, form_fields: Sequence[tuple[str, str]]) -> None:
        """``PUT /orders/{id}/payment`` url-encoded (``payments[i][method|amount|rate]``)."""
        self._request("PUT", f"/orders/{order_id}/payment", data=list(form_fields), error_message="Error al guardar")

    def save_change(self, order_id: int, form_fields: Iterable[tuple[str, str]]) -> None:
        """``POST /orders/{id}/change`` multipart con ``_method=PUT``."""
        files = [(name, (None, value)) for name, value in form_fields]
        self._request("POST", f"/orders/{order_id}/change", files=files, error_message="Error al actualizar el vuelto")

    def _upload(self, path: str, field: str, file_path: Path | str, error_message: str) -> dict:
        p = Path(file_path)
        with p.open("rb") as fh:
            resp = self._request("POST", path, files={field: (p.name, fh)}, error_message=error_message)
        try:
            body = resp.json()
        except ValueError:
            return {}
        return dict(body) if isinstance(body, Mapping) else {}

    def upload_change_receipt(self, order_id: int, file_path: Path | str) -> dict:
        return self._upload(f"/orders/{order_id}/change-receipt", "change_receipt", file_path, "Error al subir comprobante")

    def upload_payment_receipt(self, order_id: int, file_path: Path | str) -> dict:
        return self._upload(f"/orders/{order_id}/payment-receipt", "payment_receipt", file_path, "Error al subir")

    def delete_payment_receipt(self, order_id: int, receipt_id: int) -> None:
        self._request(
            "DELETE", f"/orders/{order_id}/payment-receipt/{receipt_id}", error_message="Error al eliminar comprobante"
        )
