from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from db.repositories import LedgerIntegrityError, LedgerStore
from domain.gateway import DaemonGateway
from domain.ledger import Balance, Category, Transfer

from .balance_service import BalanceService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegrityIssue:
    kind: str  # transfer_pair, orphan_transaction, account_balance, wallet_balance, daemon_drift
    subject: str
    expected: str
    actual: str
    description: str

    @property
    def fatal(self) -> bool:
        return self.kind != "daemon_drift"


class LedgerAuditor:
    """Detect ledger states that the atomic write paths should never produce.

    Nothing is repaired: issues are reported, and ``assert_consistent`` raises on
    any fatal one. Daemon drift is informational since the daemon also sees
    activity for labels the ledger does not track.
    """

    def __init__(self, *, store: LedgerStore, wallet_id: UUID, balances: BalanceService) -> None:
        self.store = store
        self.wallet_id = wallet_id
        self.balances = balances

    def audit(self, gateway: DaemonGateway | None = None) -> list[IntegrityIssue]:
        wallet = self.store.get_wallet(self.wallet_id)
        accounts = self.store.list_accounts(wallet.id)
        issues: list[IntegrityIssue] = []

        issues.extend(self._check_transfer_pairs(self.store.list_transfers(wallet.id)))

        labels = {account.label for account in accounts}
        for transaction in self.store.list_transactions(wallet.id):
            if transaction.account_label not in labels:
                issues.append(
                    IntegrityIssue(
                        kind="orphan_transaction",
                        subject=transaction.txid,
                        expected="existing account",
                        actual=transaction.account_label,
                        description=f"Transaction {transaction.txid} references unknown account "
                        f"{transaction.account_label!r}",
                    )
                )

        for account in accounts:
            recomputed = self.balances.account_balance(account)
            issue = self._compare("account_balance", account.label, recomputed, account.balance)
            if issue is not None:
                issues.append(issue)

        recomputed_wallet = self.balances.wallet_balance(wallet)
        issue = self._compare("wallet_balance", wallet.currency, recomputed_wallet, wallet.balance)
        if issue is not None:
            issues.append(issue)

        if gateway is not None:
            daemon = Balance(
                unconfirmed=gateway.get_balance(0),
                confirmed=gateway.get_balance(wallet.confirmations),
            )
            if daemon.confirmed != recomputed_wallet.confirmed:
                issues.append(
                    IntegrityIssue(
                        kind="daemon_drift",
                        subject=wallet.currency,
                        expected=str(recomputed_wallet.confirmed),
                        actual=str(daemon.confirmed),
                        description=f"Ledger confirmed balance {recomputed_wallet.confirmed} "
                        f"differs from daemon {daemon.confirmed}",
                    )
                )

        for issue in issues:
            log = logger.error if issue.fatal else logger.warning
            log("Ledger audit %s: %s", issue.kind, issue.description)
        return issues

    def assert_consistent(self, gateway: DaemonGateway | None = None) -> list[IntegrityIssue]:
        issues = self.audit(gateway)
        fatal = [issue for issue in issues if issue.fatal]
        if fatal:
            raise LedgerIntegrityError(f"Ledger audit found {len(fatal)} integrity issue(s)", issues=fatal)
        return issues

    @staticmethod
    def _check_transfer_pairs(transfers: list[Transfer]) -> list[IntegrityIssue]:
        by_pair: dict[UUID, list[Transfer]] = defaultdict(list)
        for transfer in transfers:
            by_pair[transfer.pair_id].append(transfer)

        issues: list[IntegrityIssue] = []
        for pair_id, halves in by_pair.items():
            categories = sorted(half.category.value for half in halves)
            total = sum((half.amount for half in halves), start=Decimal(0))
            if categories == [Category.RECEIVE.value, Category.SEND.value] and total == 0:
                continue
            issues.append(
                IntegrityIssue(
                    kind="transfer_pair",
                    subject=str(pair_id),
                    expected="one send and one receive summing to 0",
                    actual=f"{categories} sum={total}",
                    description=f"Transfer pair {pair_id} is incomplete or unbalanced",
                )
            )
        return issues

    @staticmethod
    def _compare(kind: str, subject: str, expected: Balance, actual: Balance) -> IntegrityIssue | None:
        if expected == actual:
            return None
        return IntegrityIssue(
            kind=kind,
            subject=subject,
            expected=f"unconfirmed={expected.unconfirmed} confirmed={expected.confirmed}",
            actual=f"unconfirmed={actual.unconfirmed} confirmed={actual.confirmed}",
            description=f"Cached balance of {subject} does not match the ledger records",
        )
