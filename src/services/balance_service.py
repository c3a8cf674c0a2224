from __future__ import annotations

from datetime import datetime

from db.repositories import LedgerStore
from domain.balances import BalanceAggregator
from domain.ledger import Account, Balance, Wallet


class BalanceService:
    """Recompute balances from ledger records and persist them as the cached values."""

    def __init__(self, store: LedgerStore, aggregator: BalanceAggregator) -> None:
        self.store = store
        self.aggregator = aggregator

    def account_balance(self, account: Account) -> Balance:
        transactions = self.store.list_transactions(account.wallet_id, account_label=account.label)
        transfers = self.store.list_transfers(account.wallet_id, account_id=account.id)
        return self.aggregator.aggregate(transactions, transfers)

    def wallet_balance(self, wallet: Wallet) -> Balance:
        transactions = self.store.list_transactions(wallet.id)
        transfers = self.store.list_transfers(wallet.id)
        return self.aggregator.aggregate(transactions, transfers)

    def refresh_account(self, account: Account) -> Account:
        return self.store.update_account_balance(account.id, self.account_balance(account))

    def refresh_wallet(self, wallet: Wallet, *, last_synced_at: datetime | None = None) -> Wallet:
        return self.store.update_wallet_balance(
            wallet.id, self.wallet_balance(wallet), last_synced_at=last_synced_at
        )
