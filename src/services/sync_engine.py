from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from pydantic import BaseModel, ValidationError

from db.repositories import LedgerIntegrityError, LedgerStore
from domain.balances import BalanceAggregator
from domain.gateway import DaemonGateway
from domain.ledger import Category, DaemonEntry, Transaction, Wallet

from .balance_service import BalanceService

logger = logging.getLogger(__name__)

# Upper bound on the daemon history fetched by a full sync.
HISTORY_PAGE_SIZE = 99999


def _from_unix(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncReport(BaseModel):
    examined: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    malformed: int = 0
    promoted: int = 0
    reset: bool = False


class SyncEngine:
    """Ingest the daemon's transaction history into the ledger and promote confirmations.

    The wallet cursor counts history entries already examined. Every entry past the
    cursor advances it by one, whether or not it produced a ledger record, and that
    advance is committed together with the entry's record and refreshed balances.
    """

    def __init__(
        self,
        *,
        store: LedgerStore,
        gateway: DaemonGateway,
        wallet_id: UUID,
        balances: BalanceService,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.wallet_id = wallet_id
        self.balances = balances
        self._clock = clock

    @property
    def aggregator(self) -> BalanceAggregator:
        return self.balances.aggregator

    def sync(self) -> SyncReport:
        report = SyncReport()
        wallet = self.store.get_wallet(self.wallet_id)
        history = self.gateway.list_transactions(HISTORY_PAGE_SIZE)

        if wallet.transaction_checked_count > len(history):
            logger.warning(
                "Daemon history for %s shrank (cursor=%d, history=%d); discarding local transactions",
                wallet.currency,
                wallet.transaction_checked_count,
                len(history),
            )
            self._reset(wallet)
            report.reset = True
            wallet = self.store.get_wallet(self.wallet_id)

        for raw_entry in history[wallet.transaction_checked_count :]:
            report.examined += 1
            self._ingest(wallet, raw_entry, report)

        report.promoted += self._poll_unconfirmed(wallet)

        self.balances.refresh_wallet(wallet, last_synced_at=self._clock())
        logger.info(
            "Synced %s: examined=%d created=%d updated=%d skipped=%d malformed=%d promoted=%d reset=%s",
            wallet.currency,
            report.examined,
            report.created,
            report.updated,
            report.skipped,
            report.malformed,
            report.promoted,
            report.reset,
        )
        return report

    def sync_transaction(self, txid: str) -> SyncReport:
        wallet = self.store.get_wallet(self.wallet_id)
        transaction = self.store.find_transaction(wallet.id, txid)
        if transaction is None:
            logger.info("Transaction %s unknown to the ledger; running full sync", txid)
            return self.sync()

        report = SyncReport()
        if transaction.confirmed:
            return report

        details = self.gateway.get_transaction(txid)
        if self._refresh_confirmations(wallet, transaction, details):
            report.promoted = 1
        return report

    def _reset(self, wallet: Wallet) -> None:
        with self.store.atomic():
            removed = self.store.delete_transactions(wallet.id)
            for account in self.store.list_accounts(wallet.id):
                self.balances.refresh_account(account)
            self.balances.refresh_wallet(wallet)
        logger.info("Removed %d transactions from %s and rewound the cursor", removed, wallet.currency)

    def _ingest(self, wallet: Wallet, raw_entry: Any, report: SyncReport) -> None:
        try:
            entry = DaemonEntry.model_validate(raw_entry)
        except ValidationError as exc:
            txid = raw_entry.get("txid") if isinstance(raw_entry, dict) else None
            logger.warning("Skipping malformed daemon entry txid=%s (%d errors)", txid, exc.error_count())
            report.malformed += 1
            self.store.advance_cursor(wallet.id)
            return

        if entry.category not in (Category.SEND, Category.RECEIVE):
            logger.debug("Skipping %s entry %s", entry.category, entry.txid)
            report.skipped += 1
            self.store.advance_cursor(wallet.id)
            return

        account = self.store.find_account(wallet.id, entry.account)
        if account is None:
            logger.debug("Skipping entry %s for unknown account %r", entry.txid, entry.account)
            report.skipped += 1
            self.store.advance_cursor(wallet.id)
            return

        category = Category(entry.category)
        confirmations = max(entry.confirmations, 0)
        existing = self.store.find_transaction(wallet.id, entry.txid)

        total_received = None
        if existing is None and category == Category.RECEIVE:
            total_received = self.gateway.get_received_by_label(account.label)

        with self.store.atomic():
            self.store.advance_cursor(wallet.id)
            if existing is not None:
                if self._apply_confirmations(existing, confirmations):
                    report.updated += 1
            else:
                self.store.add_transaction(
                    Transaction(
                        wallet_id=wallet.id,
                        account_label=account.label,
                        txid=entry.txid,
                        address=entry.address,
                        category=category,
                        amount=abs(entry.amount),
                        confirmations=confirmations,
                        occurred_at=_from_unix(entry.time),
                        received_at=_from_unix(entry.timereceived),
                        confirmed=self.aggregator.meets_threshold(confirmations),
                    )
                )
                if category == Category.RECEIVE:
                    self.store.add_deposit_reference(account.id, entry.txid, total_received=total_received)
                report.created += 1
            self.balances.refresh_account(account)
            self.balances.refresh_wallet(wallet)

    def _poll_unconfirmed(self, wallet: Wallet) -> int:
        promoted = 0
        for transaction in self.store.list_transactions(wallet.id, confirmed=False):
            details = self.gateway.get_transaction(transaction.txid)
            if self._refresh_confirmations(wallet, transaction, details):
                promoted += 1
        return promoted

    def _refresh_confirmations(self, wallet: Wallet, transaction: Transaction, details: dict[str, Any]) -> bool:
        raw_confirmations = details.get("confirmations")
        if raw_confirmations is None:
            logger.warning("Daemon returned no confirmations for %s", transaction.txid)
            return False

        account = self.store.find_account(wallet.id, transaction.account_label)
        if account is None:
            raise LedgerIntegrityError(
                f"Transaction {transaction.txid} references missing account {transaction.account_label!r}"
            )

        confirmations = max(int(raw_confirmations), 0)
        with self.store.atomic():
            written = self._apply_confirmations(transaction, confirmations)
            if written:
                self.balances.refresh_account(account)
                self.balances.refresh_wallet(wallet)
        return written and self.aggregator.meets_threshold(confirmations)

    def _apply_confirmations(self, transaction: Transaction, confirmations: int) -> bool:
        """Store the latest count and promote once the threshold is met. Returns True when anything was written."""
        if transaction.confirmed:
            return False

        promote = self.aggregator.meets_threshold(confirmations)
        if confirmations == transaction.confirmations and not promote:
            return False

        assert transaction.id is not None
        self.store.update_transaction_confirmations(transaction.id, confirmations, confirmed=promote)
        if promote:
            logger.info(
                "Confirmed %s %s of %s for %r after %d confirmations",
                transaction.category,
                transaction.txid,
                transaction.amount,
                transaction.account_label,
                confirmations,
            )
        return True
