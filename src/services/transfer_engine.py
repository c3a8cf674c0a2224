from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from db.repositories import LedgerStore, StoreUnavailableError
from domain.gateway import DaemonGateway, DaemonRPCError
from domain.ledger import (
    Account,
    Category,
    DeclineReason,
    OperationResult,
    PairId,
    Transaction,
    Transfer,
    TxId,
    has_valid_precision,
)

from .balance_service import BalanceService

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransferEngine:
    """Move funds between accounts of one wallet, or out of the wallet through the daemon.

    Every precondition is checked before anything is written; a failed check is
    reported as a declined ``OperationResult`` rather than raised.
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

    def transfer(
        self, sender: Account, recipient: Account, amount: Decimal, comment: str | None = None
    ) -> OperationResult:
        if amount <= 0 or not has_valid_precision(amount):
            return self._decline(DeclineReason.INVALID_AMOUNT, f"amount={amount}")
        if sender.id == recipient.id:
            return self._decline(DeclineReason.SELF_TRANSFER, f"account={sender.label}")

        wallet = self.store.get_wallet(self.wallet_id)
        current_sender = self.store.get_account(wallet.id, sender.id)
        if current_sender is None:
            return self._decline(DeclineReason.UNKNOWN_ACCOUNT, f"sender={sender.label}")
        current_recipient = self.store.get_account(wallet.id, recipient.id)
        if current_recipient is None:
            return self._decline(DeclineReason.UNKNOWN_RECIPIENT, f"recipient={recipient.label}")
        if current_sender.confirmed_balance < amount:
            return self._decline(
                DeclineReason.INSUFFICIENT_ACCOUNT_BALANCE,
                f"account={current_sender.label} available={current_sender.confirmed_balance} requested={amount}",
            )
        if wallet.confirmed_balance < amount:
            return self._decline(
                DeclineReason.INSUFFICIENT_WALLET_BALANCE,
                f"wallet={wallet.currency} available={wallet.confirmed_balance} requested={amount}",
            )

        pair_id = PairId(uuid4())
        timestamp = self._clock()
        send = Transfer(
            wallet_id=wallet.id,
            pair_id=pair_id,
            timestamp=timestamp,
            sender_id=current_sender.id,
            recipient_id=current_recipient.id,
            category=Category.SEND,
            amount=-amount,
            comment=comment,
        )
        receive = send.model_copy(update={"category": Category.RECEIVE, "amount": amount})

        with self.store.atomic():
            self.store.add_transfer_pair(send, receive)
            self.balances.refresh_account(current_sender)
            self.balances.refresh_account(current_recipient)
            self.balances.refresh_wallet(wallet)

        logger.info(
            "Transferred %s %s from %r to %r (pair %s)",
            amount,
            wallet.currency,
            current_sender.label,
            current_recipient.label,
            pair_id,
        )
        return OperationResult.ok(str(pair_id))

    def withdraw(self, account: Account, address: str, amount: Decimal) -> OperationResult:
        # Fees are settled by the daemon and are not booked here.
        if amount <= 0 or not has_valid_precision(amount):
            return self._decline(DeclineReason.INVALID_AMOUNT, f"amount={amount}")

        wallet = self.store.get_wallet(self.wallet_id)
        current = self.store.get_account(wallet.id, account.id)
        if current is None:
            return self._decline(DeclineReason.UNKNOWN_ACCOUNT, f"account={account.label}")
        if current.confirmed_balance < amount:
            return self._decline(
                DeclineReason.INSUFFICIENT_ACCOUNT_BALANCE,
                f"account={current.label} available={current.confirmed_balance} requested={amount}",
            )
        if wallet.confirmed_balance < amount:
            return self._decline(
                DeclineReason.INSUFFICIENT_WALLET_BALANCE,
                f"wallet={wallet.currency} available={wallet.confirmed_balance} requested={amount}",
            )
        if not self.is_valid_address(address):
            return self._decline(DeclineReason.INVALID_ADDRESS, f"address={address}")

        try:
            txid = TxId(self.gateway.send_to_address(address, amount, current.label))
        except DaemonRPCError as exc:
            return self._decline(DeclineReason.DAEMON_ERROR, str(exc))

        try:
            with self.store.atomic():
                self.store.add_withdrawal_reference(current.id, txid)
                if self.store.find_transaction(wallet.id, txid) is None:
                    self.store.add_transaction(
                        Transaction(
                            wallet_id=wallet.id,
                            account_label=current.label,
                            txid=txid,
                            address=address,
                            category=Category.SEND,
                            amount=amount,
                            confirmations=0,
                            occurred_at=self._clock(),
                            confirmed=self.balances.aggregator.meets_threshold(0),
                        )
                    )
                self.balances.refresh_account(current)
                self.balances.refresh_wallet(wallet)
        except StoreUnavailableError:
            logger.error("Withdrawal %s from %r was sent but could not be recorded", txid, current.label)
            raise

        logger.info("Withdrew %s %s from %r to %s (txid %s)", amount, wallet.currency, current.label, address, txid)
        return OperationResult.ok(txid)

    def is_valid_address(self, address: str) -> bool:
        try:
            response = self.gateway.validate_address(address)
        except DaemonRPCError:
            return False
        return bool(response.get("isvalid"))

    @staticmethod
    def _decline(reason: DeclineReason, detail: str) -> OperationResult:
        logger.warning("Declined: %s (%s)", reason, detail)
        return OperationResult.declined(reason, detail)
