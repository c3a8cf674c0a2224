from __future__ import annotations

import logging
from decimal import Decimal

from db.repositories import LedgerStore
from domain.balances import BalanceAggregator
from domain.gateway import DaemonGateway, DaemonRPCError
from domain.ledger import Account, Balance, OperationResult, Transaction, Wallet

from .balance_service import BalanceService
from .reconciliation import IntegrityIssue, LedgerAuditor
from .sync_engine import SyncEngine, SyncReport
from .transfer_engine import TransferEngine

logger = logging.getLogger(__name__)


class WalletService:
    """Entry point for one wallet: wires the store, the daemon gateway and the engines."""

    def __init__(self, *, store: LedgerStore, gateway: DaemonGateway, wallet: Wallet) -> None:
        self.store = store
        self.gateway = gateway
        self.wallet_id = wallet.id

        self.balance_service = BalanceService(store, BalanceAggregator(confirmation_threshold=wallet.confirmations))
        self.sync_engine = SyncEngine(store=store, gateway=gateway, wallet_id=wallet.id, balances=self.balance_service)
        self.transfer_engine = TransferEngine(
            store=store, gateway=gateway, wallet_id=wallet.id, balances=self.balance_service
        )
        self.auditor = LedgerAuditor(store=store, wallet_id=wallet.id, balances=self.balance_service)

    @classmethod
    def open(
        cls, *, store: LedgerStore, gateway: DaemonGateway, currency: str, confirmations: int
    ) -> WalletService:
        wallet = store.get_or_create_wallet(currency, confirmations)
        return cls(store=store, gateway=gateway, wallet=wallet)

    @property
    def wallet(self) -> Wallet:
        return self.store.get_wallet(self.wallet_id)

    # Accounts and lookups

    def create_account(self, label: str) -> Account:
        account = self.store.create_account(self.wallet_id, label)
        logger.info("Created account %r", label)
        return account

    def account(self, label: str) -> Account | None:
        return self.store.find_account(self.wallet_id, label)

    def transaction(self, txid: str) -> Transaction | None:
        return self.store.find_transaction(self.wallet_id, txid)

    # Addresses

    def generate_address(self, label: str) -> str:
        return self.gateway.get_new_address(label)

    def is_valid_address(self, address: str) -> bool:
        return self.transfer_engine.is_valid_address(address)

    def is_own_address(self, address: str) -> bool:
        response = self._validate(address)
        return bool(response.get("ismine")) if response else False

    def label_for_address(self, address: str) -> str | None:
        response = self._validate(address)
        if not response:
            return None
        label = response.get("account", response.get("label"))
        return str(label) if label is not None else None

    def encrypt(self, passphrase: str) -> bool:
        if not self.gateway.encrypt_wallet(passphrase):
            return False
        self.store.mark_encrypted(self.wallet_id)
        logger.info("Encrypted daemon wallet for %s", self.wallet.currency)
        return True

    # Engines

    def sync(self) -> SyncReport:
        return self.sync_engine.sync()

    def sync_transaction(self, txid: str) -> SyncReport:
        return self.sync_engine.sync_transaction(txid)

    def transfer(
        self, sender: Account, recipient: Account, amount: Decimal, comment: str | None = None
    ) -> OperationResult:
        return self.transfer_engine.transfer(sender, recipient, amount, comment)

    def withdraw(self, account: Account, address: str, amount: Decimal) -> OperationResult:
        return self.transfer_engine.withdraw(account, address, amount)

    # Balances

    def balances(self) -> Balance:
        return self.wallet.balance

    def account_balances(self) -> dict[str, Balance]:
        return {account.label: account.balance for account in self.store.list_accounts(self.wallet_id)}

    def daemon_balance(self) -> Balance:
        return Balance(
            unconfirmed=self.gateway.get_balance(0),
            confirmed=self.gateway.get_balance(self.wallet.confirmations),
        )

    def audit(self, *, include_daemon: bool = False) -> list[IntegrityIssue]:
        return self.auditor.audit(self.gateway if include_daemon else None)

    def _validate(self, address: str) -> dict | None:
        try:
            return self.gateway.validate_address(address)
        except DaemonRPCError as exc:
            logger.warning("validateaddress failed for %s: %s", address, exc)
            return None
