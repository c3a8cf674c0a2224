from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from db import models
from domain.ledger import (
    Account,
    AccountId,
    Balance,
    Category,
    PairId,
    Transaction,
    Transfer,
    TxId,
    Wallet,
    WalletId,
)

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """The database could not be reached or is locked. Safe to retry."""


class LedgerIntegrityError(RuntimeError):
    """The ledger violates one of its structural invariants."""

    def __init__(self, message: str, *, issues: list[Any] | None = None) -> None:
        super().__init__(message)
        self.issues = issues or []


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _append_unique(values: list[str], value: str) -> list[str]:
    if value in values:
        return list(values)
    return [*values, value]


class LedgerStore:
    """Wallet-scoped persistence for accounts, transactions and transfers.

    Every mutating call commits on its own unless it runs inside ``atomic()``,
    in which case the whole block is committed (or rolled back) as one unit.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield
            self._session.commit()
        except OperationalError as exc:
            self._session.rollback()
            raise StoreUnavailableError("Ledger store is unavailable") from exc
        except BaseException:
            self._session.rollback()
            raise
        finally:
            self._depth = 0

    # Wallets

    def create_wallet(self, currency: str, confirmations: int) -> Wallet:
        wallet = Wallet(currency=currency.upper(), confirmations=confirmations)
        if self.find_wallet(wallet.currency) is not None:
            raise ValueError(f"Wallet for currency {wallet.currency} already exists")
        orm_wallet = models.WalletOrm(
            id=wallet.id,
            currency=wallet.currency,
            confirmations=wallet.confirmations,
            transaction_checked_count=0,
            unconfirmed_balance=Decimal(0),
            confirmed_balance=Decimal(0),
            encrypted=False,
        )
        self._session.add(orm_wallet)
        self._commit()
        return self.get_wallet(wallet.id)

    def get_wallet(self, wallet_id: UUID) -> Wallet:
        orm_wallet = self._load_wallet(wallet_id)
        return self._wallet_to_domain(orm_wallet)

    def find_wallet(self, currency: str) -> Wallet | None:
        stmt = select(models.WalletOrm).where(models.WalletOrm.currency == currency.upper())
        orm_wallet = self._scalar(stmt)
        if orm_wallet is None:
            return None
        return self._wallet_to_domain(orm_wallet)

    def get_or_create_wallet(self, currency: str, confirmations: int) -> Wallet:
        existing = self.find_wallet(currency)
        if existing is not None:
            if existing.confirmations != confirmations:
                logger.warning(
                    "Wallet %s keeps its confirmation threshold %d (requested %d)",
                    existing.currency,
                    existing.confirmations,
                    confirmations,
                )
            return existing
        return self.create_wallet(currency, confirmations)

    def advance_cursor(self, wallet_id: UUID, step: int = 1) -> int:
        orm_wallet = self._load_wallet(wallet_id)
        orm_wallet.transaction_checked_count += step
        self._commit()
        return orm_wallet.transaction_checked_count

    def update_wallet_balance(
        self, wallet_id: UUID, balance: Balance, *, last_synced_at: datetime | None = None
    ) -> Wallet:
        orm_wallet = self._load_wallet(wallet_id)
        orm_wallet.unconfirmed_balance = balance.unconfirmed
        orm_wallet.confirmed_balance = balance.confirmed
        if last_synced_at is not None:
            orm_wallet.last_synced_at = last_synced_at
        self._commit()
        return self._wallet_to_domain(orm_wallet)

    def mark_encrypted(self, wallet_id: UUID) -> Wallet:
        orm_wallet = self._load_wallet(wallet_id)
        orm_wallet.encrypted = True
        self._commit()
        return self._wallet_to_domain(orm_wallet)

    # Accounts

    def create_account(self, wallet_id: UUID, label: str) -> Account:
        account = Account(wallet_id=WalletId(wallet_id), label=label)
        if self.find_account(wallet_id, label) is not None:
            raise ValueError(f"Account {label!r} already exists in wallet {wallet_id}")
        self._load_wallet(wallet_id)
        orm_account = models.AccountOrm(
            id=account.id,
            wallet_id=account.wallet_id,
            label=account.label,
            unconfirmed_balance=Decimal(0),
            confirmed_balance=Decimal(0),
            withdrawal_ids=[],
            deposit_ids=[],
            total_received=Decimal(0),
        )
        self._session.add(orm_account)
        self._commit()
        return self._account_to_domain(orm_account)

    def find_account(self, wallet_id: UUID, label: str) -> Account | None:
        stmt = select(models.AccountOrm).where(
            models.AccountOrm.wallet_id == wallet_id,
            models.AccountOrm.label == label,
        )
        orm_account = self._scalar(stmt)
        if orm_account is None:
            return None
        return self._account_to_domain(orm_account)

    def get_account(self, wallet_id: UUID, account_id: UUID) -> Account | None:
        orm_account = self._session.get(models.AccountOrm, account_id)
        if orm_account is None or orm_account.wallet_id != wallet_id:
            return None
        return self._account_to_domain(orm_account)

    def list_accounts(self, wallet_id: UUID) -> list[Account]:
        stmt = (
            select(models.AccountOrm)
            .where(models.AccountOrm.wallet_id == wallet_id)
            .order_by(models.AccountOrm.label.asc())
        )
        return [self._account_to_domain(row) for row in self._scalars(stmt)]

    def update_account_balance(self, account_id: UUID, balance: Balance) -> Account:
        orm_account = self._load_account(account_id)
        orm_account.unconfirmed_balance = balance.unconfirmed
        orm_account.confirmed_balance = balance.confirmed
        self._commit()
        return self._account_to_domain(orm_account)

    def add_deposit_reference(
        self, account_id: UUID, txid: str, *, total_received: Decimal | None = None
    ) -> Account:
        orm_account = self._load_account(account_id)
        orm_account.deposit_ids = _append_unique(orm_account.deposit_ids, txid)
        if total_received is not None:
            orm_account.total_received = total_received
        self._commit()
        return self._account_to_domain(orm_account)

    def add_withdrawal_reference(self, account_id: UUID, txid: str) -> Account:
        orm_account = self._load_account(account_id)
        orm_account.withdrawal_ids = _append_unique(orm_account.withdrawal_ids, txid)
        self._commit()
        return self._account_to_domain(orm_account)

    # Transactions

    def add_transaction(self, transaction: Transaction) -> Transaction:
        if self.find_transaction(transaction.wallet_id, transaction.txid) is not None:
            raise ValueError(f"Transaction {transaction.txid} already recorded")
        orm_transaction = models.TransactionOrm(
            wallet_id=transaction.wallet_id,
            account_label=transaction.account_label,
            txid=transaction.txid,
            address=transaction.address,
            category=transaction.category.value,
            amount=transaction.amount,
            confirmations=transaction.confirmations,
            occurred_at=transaction.occurred_at,
            received_at=transaction.received_at,
            confirmed=transaction.confirmed,
        )
        self._session.add(orm_transaction)
        self._commit()
        return self._transaction_to_domain(orm_transaction)

    def find_transaction(self, wallet_id: UUID, txid: str) -> Transaction | None:
        stmt = select(models.TransactionOrm).where(
            models.TransactionOrm.wallet_id == wallet_id,
            models.TransactionOrm.txid == txid,
        )
        orm_transaction = self._scalar(stmt)
        if orm_transaction is None:
            return None
        return self._transaction_to_domain(orm_transaction)

    def list_transactions(
        self,
        wallet_id: UUID,
        *,
        account_label: str | None = None,
        category: Category | None = None,
        confirmed: bool | None = None,
    ) -> list[Transaction]:
        stmt = select(models.TransactionOrm).where(models.TransactionOrm.wallet_id == wallet_id)
        if account_label is not None:
            stmt = stmt.where(models.TransactionOrm.account_label == account_label)
        if category is not None:
            stmt = stmt.where(models.TransactionOrm.category == category.value)
        if confirmed is not None:
            stmt = stmt.where(models.TransactionOrm.confirmed == confirmed)
        stmt = stmt.order_by(models.TransactionOrm.id.asc())
        return [self._transaction_to_domain(row) for row in self._scalars(stmt)]

    def update_transaction_confirmations(
        self, transaction_id: int, confirmations: int, *, confirmed: bool = False
    ) -> Transaction:
        orm_transaction = self._session.get(models.TransactionOrm, transaction_id)
        if orm_transaction is None:
            raise LookupError(f"Transaction {transaction_id} not found")
        orm_transaction.confirmations = confirmations
        # Promotion is one-way.
        orm_transaction.confirmed = orm_transaction.confirmed or confirmed
        self._commit()
        return self._transaction_to_domain(orm_transaction)

    def delete_transactions(self, wallet_id: UUID) -> int:
        """Drop every transaction of the wallet and rewind its cursor."""
        orm_wallet = self._load_wallet(wallet_id)
        result = self._session.execute(
            delete(models.TransactionOrm).where(models.TransactionOrm.wallet_id == wallet_id)
        )
        orm_wallet.transaction_checked_count = 0
        self._commit()
        return int(getattr(result, "rowcount", 0) or 0)

    # Transfers

    def add_transfer_pair(self, send: Transfer, receive: Transfer) -> tuple[Transfer, Transfer]:
        if send.category != Category.SEND or receive.category != Category.RECEIVE:
            raise ValueError("Transfer pair must be one send and one receive")
        if send.pair_id != receive.pair_id or send.wallet_id != receive.wallet_id:
            raise ValueError("Transfer pair halves must share wallet and pair_id")
        if send.amount + receive.amount != 0:
            raise ValueError("Transfer pair amounts must sum to zero")

        orm_rows = [self._transfer_to_orm(send), self._transfer_to_orm(receive)]
        self._session.add_all(orm_rows)
        self._commit()
        first, second = (self._transfer_to_domain(row) for row in orm_rows)
        return first, second

    def list_transfers(self, wallet_id: UUID, *, account_id: UUID | None = None) -> list[Transfer]:
        stmt = select(models.TransferOrm).where(models.TransferOrm.wallet_id == wallet_id)
        if account_id is not None:
            # Each half is booked against one side only.
            stmt = stmt.where(
                or_(
                    and_(
                        models.TransferOrm.category == Category.SEND.value,
                        models.TransferOrm.sender_id == account_id,
                    ),
                    and_(
                        models.TransferOrm.category == Category.RECEIVE.value,
                        models.TransferOrm.recipient_id == account_id,
                    ),
                )
            )
        stmt = stmt.order_by(models.TransferOrm.id.asc())
        return [self._transfer_to_domain(row) for row in self._scalars(stmt)]

    # Internals

    def _commit(self) -> None:
        try:
            if self._depth:
                self._session.flush()
            else:
                self._session.commit()
        except OperationalError as exc:
            self._session.rollback()
            raise StoreUnavailableError("Ledger store is unavailable") from exc

    def _scalar(self, stmt: Any) -> Any:
        try:
            return self._session.scalar(stmt)
        except OperationalError as exc:
            raise StoreUnavailableError("Ledger store is unavailable") from exc

    def _scalars(self, stmt: Any) -> list[Any]:
        try:
            return list(self._session.execute(stmt).scalars().all())
        except OperationalError as exc:
            raise StoreUnavailableError("Ledger store is unavailable") from exc

    def _load_wallet(self, wallet_id: UUID) -> models.WalletOrm:
        orm_wallet = self._session.get(models.WalletOrm, wallet_id)
        if orm_wallet is None:
            raise LookupError(f"Wallet {wallet_id} not found")
        return orm_wallet

    def _load_account(self, account_id: UUID) -> models.AccountOrm:
        orm_account = self._session.get(models.AccountOrm, account_id)
        if orm_account is None:
            raise LookupError(f"Account {account_id} not found")
        return orm_account

    @staticmethod
    def _wallet_to_domain(orm_wallet: models.WalletOrm) -> Wallet:
        return Wallet(
            id=WalletId(orm_wallet.id),
            currency=orm_wallet.currency,
            confirmations=orm_wallet.confirmations,
            transaction_checked_count=orm_wallet.transaction_checked_count,
            unconfirmed_balance=orm_wallet.unconfirmed_balance,
            confirmed_balance=orm_wallet.confirmed_balance,
            last_synced_at=_as_utc(orm_wallet.last_synced_at),
            encrypted=orm_wallet.encrypted,
        )

    @staticmethod
    def _account_to_domain(orm_account: models.AccountOrm) -> Account:
        return Account(
            id=AccountId(orm_account.id),
            wallet_id=WalletId(orm_account.wallet_id),
            label=orm_account.label,
            unconfirmed_balance=orm_account.unconfirmed_balance,
            confirmed_balance=orm_account.confirmed_balance,
            withdrawal_ids=[TxId(txid) for txid in orm_account.withdrawal_ids],
            deposit_ids=[TxId(txid) for txid in orm_account.deposit_ids],
            total_received=orm_account.total_received,
        )

    @staticmethod
    def _transaction_to_domain(orm_transaction: models.TransactionOrm) -> Transaction:
        return Transaction(
            id=orm_transaction.id,
            wallet_id=WalletId(orm_transaction.wallet_id),
            account_label=orm_transaction.account_label,
            txid=TxId(orm_transaction.txid),
            address=orm_transaction.address,
            category=Category(orm_transaction.category),
            amount=orm_transaction.amount,
            confirmations=orm_transaction.confirmations,
            occurred_at=_as_utc(orm_transaction.occurred_at),
            received_at=_as_utc(orm_transaction.received_at),
            confirmed=orm_transaction.confirmed,
        )

    @staticmethod
    def _transfer_to_orm(transfer: Transfer) -> models.TransferOrm:
        return models.TransferOrm(
            wallet_id=transfer.wallet_id,
            pair_id=transfer.pair_id,
            timestamp=transfer.timestamp,
            sender_id=transfer.sender_id,
            recipient_id=transfer.recipient_id,
            category=transfer.category.value,
            amount=transfer.amount,
            comment=transfer.comment,
        )

    @staticmethod
    def _transfer_to_domain(orm_transfer: models.TransferOrm) -> Transfer:
        timestamp = _as_utc(orm_transfer.timestamp)
        assert timestamp is not None
        return Transfer(
            id=orm_transfer.id,
            wallet_id=WalletId(orm_transfer.wallet_id),
            pair_id=PairId(orm_transfer.pair_id),
            timestamp=timestamp,
            sender_id=AccountId(orm_transfer.sender_id),
            recipient_id=AccountId(orm_transfer.recipient_id),
            category=Category(orm_transfer.category),
            amount=orm_transfer.amount,
            comment=orm_transfer.comment,
        )
