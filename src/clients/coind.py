from __future__ import annotations

import json
import logging
from decimal import Decimal
from itertools import count
from typing import Any

import requests

from config import AppSettings
from domain.gateway import DaemonRPCError, DaemonUnavailableError

logger = logging.getLogger(__name__)


class CoindClient:
    """Minimal bitcoind-style JSON-RPC client covering the calls the ledger needs."""

    def __init__(
        self,
        *,
        rpc_user: str,
        rpc_password: str,
        host: str = "127.0.0.1",
        port: int = 8332,
        use_ssl: bool = False,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not host:
            msg = "host must be provided"
            raise ValueError(msg)

        scheme = "https" if use_ssl else "http"
        self.url = f"{scheme}://{host}:{port}/"
        self.timeout = timeout
        self._auth = (rpc_user, rpc_password)
        self._session = session or requests.Session()
        self._ids = count(1)

    def list_transactions(self, count: int) -> list[dict[str, Any]]:
        result = self._call("listtransactions", "*", count)
        if not isinstance(result, list):
            raise DaemonUnavailableError("listtransactions returned unexpected payload type")
        return result

    def get_transaction(self, txid: str) -> dict[str, Any]:
        result = self._call("gettransaction", txid)
        if not isinstance(result, dict):
            raise DaemonUnavailableError("gettransaction returned unexpected payload type")
        return result

    def send_to_address(self, address: str, amount: Decimal, label: str) -> str:
        return str(self._call("sendtoaddress", address, amount, label))

    def validate_address(self, address: str) -> dict[str, Any]:
        result = self._call("validateaddress", address)
        if not isinstance(result, dict):
            raise DaemonUnavailableError("validateaddress returned unexpected payload type")
        return result

    def get_new_address(self, label: str) -> str:
        return str(self._call("getnewaddress", label))

    def get_received_by_label(self, label: str) -> Decimal:
        return self._to_decimal(self._call("getreceivedbylabel", label))

    def get_balance(self, min_confirmations: int) -> Decimal:
        return self._to_decimal(self._call("getbalance", "*", min_confirmations))

    def encrypt_wallet(self, passphrase: str) -> bool:
        self._call("encryptwallet", passphrase)
        return True

    def _call(self, method: str, *params: Any) -> Any:
        request_id = next(self._ids)
        # bitcoind accepts amounts as JSON strings, which keeps Decimal exact.
        body = json.dumps(
            {"jsonrpc": "1.0", "id": request_id, "method": method, "params": list(params)},
            default=str,
        )
        logger.debug("RPC call id=%d method=%s", request_id, method)
        try:
            response = self._session.post(
                self.url,
                data=body,
                auth=self._auth,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except requests.RequestException as exc:
            raise DaemonUnavailableError(f"RPC {method} failed: {exc}") from exc

        try:
            payload = response.json(parse_float=Decimal)
        except ValueError as exc:
            # bitcoind answers RPC errors with HTTP 500 and a JSON body, so only a missing body is fatal.
            raise DaemonUnavailableError(
                f"RPC {method} returned invalid JSON", status_code=response.status_code
            ) from exc

        if not isinstance(payload, dict):
            raise DaemonUnavailableError(
                f"RPC {method} returned unexpected payload type", status_code=response.status_code
            )

        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                raise DaemonRPCError(
                    str(error.get("message", "unknown error")), code=error.get("code"), method=method
                )
            raise DaemonRPCError(str(error), method=method)

        if response.status_code >= 400:
            raise DaemonUnavailableError(f"RPC {method} failed", status_code=response.status_code)

        return payload.get("result")

    @staticmethod
    def _to_decimal(value: Any) -> Decimal:
        if value is None:
            return Decimal(0)
        return Decimal(str(value))


def build_client(settings: AppSettings, *, session: requests.Session | None = None) -> CoindClient:
    return CoindClient(
        rpc_user=settings.rpc_user,
        rpc_password=settings.rpc_password,
        host=settings.rpc_host,
        port=settings.rpc_port,
        use_ssl=settings.rpc_ssl,
        timeout=settings.rpc_timeout,
        session=session,
    )


__all__ = ["CoindClient", "build_client"]
