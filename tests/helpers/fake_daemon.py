from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any

from domain.gateway import DaemonRPCError, DaemonUnavailableError
from services.wallet_service import WalletService
from tests.constants import THRESHOLD


class FakeDaemon:
    """In-memory stand-in for the coin daemon with a scriptable transaction history."""

    def __init__(self) -> None:
        self.history: list[dict[str, Any]] = []
        self.confirmations: dict[str, int] = {}
        self.received: dict[str, Decimal] = defaultdict(lambda: Decimal(0))
        self.valid_addresses: set[str] = set()
        self.own_addresses: dict[str, str] = {}
        self.send_error: DaemonRPCError | None = None
        self.unavailable = False
        self.encrypted = False
        self.sent: list[tuple[str, Decimal, str]] = []
        self.calls: list[str] = []
        self._counter = 0

    def add_entry(
        self,
        *,
        category: str,
        account: str,
        amount: Decimal,
        confirmations: int = 0,
        txid: str | None = None,
        address: str = "1DepositAddr",
        time: int = 1_700_000_000,
    ) -> dict[str, Any]:
        txid = txid or self._next_id("tx")
        entry = {
            "account": account,
            "address": address,
            "category": category,
            "amount": -amount if category == "send" else amount,
            "confirmations": confirmations,
            "txid": txid,
            "time": time,
            "timereceived": time + 5,
        }
        self.history.append(entry)
        self.confirmations[txid] = confirmations
        if category == "receive":
            self.received[account] += amount
        return entry

    def confirm(self, txid: str, confirmations: int) -> None:
        self.confirmations[txid] = confirmations
        for entry in self.history:
            if entry.get("txid") == txid:
                entry["confirmations"] = confirmations

    # Gateway surface

    def list_transactions(self, count: int) -> list[dict[str, Any]]:
        self._record("list_transactions")
        return [dict(entry) for entry in self.history[-count:]]

    def get_transaction(self, txid: str) -> dict[str, Any]:
        self._record("get_transaction")
        if txid not in self.confirmations:
            raise DaemonRPCError("Invalid or non-wallet transaction id", code=-5, method="gettransaction")
        return {"txid": txid, "confirmations": self.confirmations[txid]}

    def send_to_address(self, address: str, amount: Decimal, label: str) -> str:
        self._record("send_to_address")
        if self.send_error is not None:
            raise self.send_error
        txid = self._next_id("send")
        self.sent.append((address, amount, label))
        self.add_entry(category="send", account=label, amount=amount, txid=txid, address=address)
        return txid

    def validate_address(self, address: str) -> dict[str, Any]:
        self._record("validate_address")
        if address in self.own_addresses:
            return {"isvalid": True, "ismine": True, "account": self.own_addresses[address]}
        return {"isvalid": address in self.valid_addresses, "ismine": False}

    def get_new_address(self, label: str) -> str:
        self._record("get_new_address")
        address = self._next_id(f"{label}-addr")
        self.own_addresses[address] = label
        return address

    def get_received_by_label(self, label: str) -> Decimal:
        self._record("get_received_by_label")
        return self.received[label]

    def get_balance(self, min_confirmations: int) -> Decimal:
        self._record("get_balance")
        total = Decimal(0)
        for entry in self.history:
            if entry.get("category") not in ("send", "receive"):
                continue
            if entry["category"] == "receive" and self.confirmations[entry["txid"]] < min_confirmations:
                continue
            total += entry["amount"]
        return total

    def encrypt_wallet(self, passphrase: str) -> bool:
        self._record("encrypt_wallet")
        self.encrypted = True
        return True

    def _record(self, name: str) -> None:
        if self.unavailable:
            raise DaemonUnavailableError("daemon offline")
        self.calls.append(name)

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"


def fund(
    service: WalletService,
    daemon: FakeDaemon,
    label: str,
    amount: Decimal,
    *,
    confirmations: int = THRESHOLD,
) -> str:
    """Deposit ``amount`` into ``label`` on the daemon and sync it into the ledger."""
    entry = daemon.add_entry(category="receive", account=label, amount=amount, confirmations=confirmations)
    service.sync()
    return str(entry["txid"])
