from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from src.order_change.api import BackofficeClient, ServerRejection, TransportError


def _response(status=200, body=None, json_error=False):
    resp = MagicMock()
    resp.status_code = status
    if json_error:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body if body is not None else {}
    return resp


def _client(resp=None, error=None):
    session = MagicMock()
    if error is not None:
        session.request.side_effect = error
    else:
        session.request.return_value = resp
    client = BackofficeClient(base_url="https://api.test/api/", token="tok", timeout=5, session=session)
    return client, session


def test_headers_and_base_url() -> None:
    client, session = _client(_response(body=[{"id": 1, "name": "Banesco"}]))
    banks = client.get_banks()
    assert banks == [{"id": 1, "name": "Banesco"}]
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert (method, url) == ("GET", "https://api.test/api/banks")
    assert kwargs["headers"] == {"Accept": "application/json", "Authorization": "Bearer tok"}
    assert kwargs["timeout"] == 5


def test_save_payments_is_url_encoded_put() -> None:
    client, session = _client(_response())
    body = [("payments[0][method]", "DOLARES_EFECTIVO"), ("payments[0][amount]", "20.00")]
    client.save_payments(9, body)
    args, kwargs = session.request.call_args
    assert args == ("PUT", "https://api.test/api/orders/9/payment")
    assert kwargs["data"] == body


def test_save_change_is_multipart_post() -> None:
    client, session = _client(_response())
    client.save_change(9, [("_method", "PUT"), ("change_covered_by", "agency")])
    args, kwargs = session.request.call_args
    assert args == ("POST", "https://api.test/api/orders/9/change")
    assert kwargs["files"] == [("_method", (None, "PUT")), ("change_covered_by", (None, "agency"))]


def test_upload_change_receipt_uses_change_receipt_field(tmp_path) -> None:
    f = tmp_path / "vuelto.png"
    f.write_bytes(b"png")
    client, session = _client(_response(body={"change_receipt": "receipts/9.png"}))
    out = client.upload_change_receipt(9, f)
    assert out == {"change_receipt": "receipts/9.png"}
    args, kwargs = session.request.call_args
    assert args == ("POST", "https://api.test/api/orders/9/change-receipt")
    assert list(kwargs["files"]) == ["change_receipt"]


def test_pending_changes_unwraps_orders() -> None:
    client, _ = _client(_response(body={"orders": [{"id": 1}]}))
    assert client.list_pending_changes() == [{"id": 1}]


def test_transport_error() -> None:
    client, _ = _client(error=requests.ConnectionError("down"))
    with pytest.raises(TransportError):
        client.get_currency()


def test_server_rejection_carries_message() -> None:
    client, _ = _client(_response(status=422, body={"message": "Monto inválido"}))
    with pytest.raises(ServerRejection) as exc:
        client.save_change(1, [])
    assert exc.value.status == 422
    assert exc.value.message == "Monto inválido"


def test_server_rejection_default_message() -> None:
    client, _ = _client(_response(status=500, json_error=True))
    with pytest.raises(ServerRejection) as exc:
        client.delete_payment_receipt(1, 2)
    assert exc.value.message == "Error al eliminar comprobante"
