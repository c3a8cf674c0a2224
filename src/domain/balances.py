from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from .ledger import Balance, Category, Transaction, Transfer


class BalanceAggregator:
    """Recompute (unconfirmed, confirmed) balances from ledger records.

    Unconfirmed covers every observed record (the daemon's 0-confirmation view).
    Confirmed covers transfers, which are final as soon as they are written,
    transactions that reached the threshold, and outgoing sends: funds that
    already left the wallet are never counted as spendable.
    """

    def __init__(self, *, confirmation_threshold: int) -> None:
        if confirmation_threshold < 0:
            raise ValueError("confirmation_threshold must be >= 0")
        self.confirmation_threshold = confirmation_threshold

    def meets_threshold(self, confirmations: int) -> bool:
        return confirmations >= self.confirmation_threshold

    def is_final(self, transaction: Transaction) -> bool:
        return transaction.confirmed or self.meets_threshold(transaction.confirmations)

    def aggregate(self, transactions: Iterable[Transaction], transfers: Iterable[Transfer]) -> Balance:
        unconfirmed = Decimal(0)
        confirmed = Decimal(0)

        for transfer in transfers:
            unconfirmed += transfer.amount
            confirmed += transfer.amount

        for transaction in transactions:
            delta = transaction.signed_amount
            unconfirmed += delta
            if transaction.category == Category.SEND or self.is_final(transaction):
                confirmed += delta

        return Balance(unconfirmed=unconfirmed, confirmed=confirmed)
