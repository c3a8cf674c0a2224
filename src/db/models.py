from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class WalletOrm(Base):
    __tablename__ = "wallets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    currency: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    confirmations: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_checked_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unconfirmed_balance: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False, default=Decimal(0))
    confirmed_balance: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False, default=Decimal(0))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    accounts: Mapped[list["AccountOrm"]] = relationship(cascade="all, delete-orphan", back_populates="wallet")
    transactions: Mapped[list["TransactionOrm"]] = relationship(cascade="all, delete-orphan", back_populates="wallet")
    transfers: Mapped[list["TransferOrm"]] = relationship(cascade="all, delete-orphan", back_populates="wallet")


class AccountOrm(Base):
    __tablename__ = "accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    wallet_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("wallets.id"), nullable=False)
    label: Mapped[str] = mapped_column(String, nullable=False)
    unconfirmed_balance: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False, default=Decimal(0))
    confirmed_balance: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False, default=Decimal(0))
    withdrawal_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    deposit_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    total_received: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False, default=Decimal(0))

    wallet: Mapped[WalletOrm] = relationship(back_populates="accounts")

    __table_args__ = (UniqueConstraint("wallet_id", "label", name="uq_accounts_wallet_label"),)


class TransactionOrm(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("wallets.id"), nullable=False)
    account_label: Mapped[str] = mapped_column(String, nullable=False)
    txid: Mapped[str] = mapped_column(String, nullable=False)
    address: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    occurred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    wallet: Mapped[WalletOrm] = relationship(back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("wallet_id", "txid", name="uq_transactions_wallet_txid"),
        Index("ix_transactions_wallet_label", "wallet_id", "account_label"),
    )


class TransferOrm(Base):
    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("wallets.id"), nullable=False)
    pair_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sender_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("accounts.id"), nullable=False)
    recipient_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("accounts.id"), nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    comment: Mapped[str | None] = mapped_column(String, nullable=True)

    wallet: Mapped[WalletOrm] = relationship(back_populates="transfers")

    __table_args__ = (Index("ix_transfers_pair", "pair_id"),)
