from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from clients.coind import CoindClient, build_client
from config import AppSettings
from domain.gateway import DaemonRPCError, DaemonUnavailableError


def _mock_response(payload: dict, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = "payload"
    return response


def _client(session: Mock) -> CoindClient:
    return CoindClient(rpc_user="user", rpc_password="secret", session=session)


def _sent_body(session: Mock) -> dict:
    return json.loads(session.post.call_args.kwargs["data"])


def test_list_transactions_posts_json_rpc_request() -> None:
    session = Mock()
    rows = [{"category": "receive", "account": "alice", "txid": "abc", "amount": Decimal("1.5"), "confirmations": 2}]
    session.post.return_value = _mock_response({"result": rows, "error": None, "id": 1})

    client = _client(session)
    result = client.list_transactions(99999)

    assert result == rows
    body = _sent_body(session)
    assert body["method"] == "listtransactions"
    assert body["params"] == ["*", 99999]
    assert session.post.call_args.args == ("http://127.0.0.1:8332/",)
    assert session.post.call_args.kwargs["auth"] == ("user", "secret")


def test_send_to_address_serializes_amount_exactly() -> None:
    session = Mock()
    session.post.return_value = _mock_response({"result": "txid-1", "error": None, "id": 1})

    txid = _client(session).send_to_address("1Dest", Decimal("0.12345678"), "alice")

    assert txid == "txid-1"
    assert _sent_body(session)["params"] == ["1Dest", "0.12345678", "alice"]


def test_rpc_error_object_raises_business_error() -> None:
    session = Mock()
    session.post.return_value = _mock_response(
        {"result": None, "error": {"code": -6, "message": "Insufficient funds"}, "id": 1}, status_code=500
    )

    with pytest.raises(DaemonRPCError) as excinfo:
        _client(session).send_to_address("1Dest", Decimal("1"), "alice")

    assert excinfo.value.code == -6
    assert excinfo.value.method == "sendtoaddress"
    assert str(excinfo.value) == "Insufficient funds"


def test_transport_failure_is_unavailable() -> None:
    session = Mock()
    session.post.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(DaemonUnavailableError):
        _client(session).get_transaction("abc")


def test_non_json_response_is_unavailable() -> None:
    session = Mock()
    response = _mock_response({}, status_code=401)
    response.json.side_effect = ValueError("no json")
    session.post.return_value = response

    with pytest.raises(DaemonUnavailableError) as excinfo:
        _client(session).get_balance(6)

    assert excinfo.value.status_code == 401


def test_balances_are_decimals() -> None:
    session = Mock()
    session.post.return_value = _mock_response({"result": Decimal("2.50000000"), "error": None, "id": 1})

    assert _client(session).get_balance(0) == Decimal("2.5")
    assert _sent_body(session)["params"] == ["*", 0]


def test_build_client_uses_settings() -> None:
    settings = AppSettings(rpc_user="u", rpc_password="p", rpc_host="node", rpc_port=18332, rpc_ssl=True)

    client = build_client(settings, session=Mock())

    assert client.url == "https://node:18332/"
    assert client.timeout == 30.0
