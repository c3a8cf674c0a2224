from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol


class DaemonError(RuntimeError):
    pass


class DaemonUnavailableError(DaemonError):
    """Transport-level failure talking to the daemon. Safe to retry."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DaemonRPCError(DaemonError):
    """The daemon answered with a JSON-RPC error object."""

    def __init__(self, message: str, *, code: int | None = None, method: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.method = method


class DaemonGateway(Protocol):
    """Capabilities of the coin daemon consumed by the ledger engines."""

    def list_transactions(self, count: int) -> list[dict[str, Any]]: ...

    def get_transaction(self, txid: str) -> dict[str, Any]: ...

    def send_to_address(self, address: str, amount: Decimal, label: str) -> str: ...

    def validate_address(self, address: str) -> dict[str, Any]: ...

    def get_new_address(self, label: str) -> str: ...

    def get_received_by_label(self, label: str) -> Decimal: ...

    def get_balance(self, min_confirmations: int) -> Decimal: ...

    def encrypt_wallet(self, passphrase: str) -> bool: ...


__all__ = ["DaemonError", "DaemonGateway", "DaemonRPCError", "DaemonUnavailableError"]
