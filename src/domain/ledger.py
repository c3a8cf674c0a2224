from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, NewType
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

WalletId = NewType("WalletId", UUID)
AccountId = NewType("AccountId", UUID)
PairId = NewType("PairId", UUID)
TxId = NewType("TxId", str)

AMOUNT_DECIMALS = 8
SMALLEST_UNIT = Decimal(1).scaleb(-AMOUNT_DECIMALS)


def has_valid_precision(amount: Decimal) -> bool:
    """True when ``amount`` fits the currency's smallest unit (8 fractional digits)."""
    if not amount.is_finite():
        return False
    return amount == amount.quantize(SMALLEST_UNIT)


class Category(StrEnum):
    SEND = "send"
    RECEIVE = "receive"


class DeclineReason(StrEnum):
    INVALID_AMOUNT = "INVALID_AMOUNT"
    SELF_TRANSFER = "SELF_TRANSFER"
    UNKNOWN_ACCOUNT = "UNKNOWN_ACCOUNT"
    UNKNOWN_RECIPIENT = "UNKNOWN_RECIPIENT"
    INSUFFICIENT_ACCOUNT_BALANCE = "INSUFFICIENT_ACCOUNT_BALANCE"
    INSUFFICIENT_WALLET_BALANCE = "INSUFFICIENT_WALLET_BALANCE"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    DAEMON_ERROR = "DAEMON_ERROR"


class Balance(BaseModel):
    model_config = ConfigDict(frozen=True)

    unconfirmed: Decimal = Decimal(0)
    confirmed: Decimal = Decimal(0)


class Wallet(BaseModel):
    id: WalletId = WalletId(Field(default_factory=uuid4))
    currency: str
    confirmations: int
    transaction_checked_count: int = 0
    unconfirmed_balance: Decimal = Decimal(0)
    confirmed_balance: Decimal = Decimal(0)
    last_synced_at: datetime | None = None
    encrypted: bool = False

    @model_validator(mode="after")
    def _validate_fields(self) -> Wallet:
        if not self.currency:
            raise ValueError("Wallet.currency must be non-empty")
        if self.confirmations < 0:
            raise ValueError("Wallet.confirmations must be >= 0")
        if self.transaction_checked_count < 0:
            raise ValueError("Wallet.transaction_checked_count must be >= 0")
        return self

    @property
    def balance(self) -> Balance:
        return Balance(unconfirmed=self.unconfirmed_balance, confirmed=self.confirmed_balance)


class Account(BaseModel):
    id: AccountId = AccountId(Field(default_factory=uuid4))
    wallet_id: WalletId
    label: str
    unconfirmed_balance: Decimal = Decimal(0)
    confirmed_balance: Decimal = Decimal(0)
    withdrawal_ids: list[TxId] = Field(default_factory=list)
    deposit_ids: list[TxId] = Field(default_factory=list)
    total_received: Decimal = Decimal(0)

    @model_validator(mode="after")
    def _validate_label(self) -> Account:
        if not self.label:
            raise ValueError("Account.label must be non-empty")
        return self

    @property
    def balance(self) -> Balance:
        return Balance(unconfirmed=self.unconfirmed_balance, confirmed=self.confirmed_balance)


class Transaction(BaseModel):
    """A daemon-observed movement.

    ``amount`` is a magnitude; the direction comes from ``category``.
    Once ``confirmed`` is set it is never cleared.
    """

    id: int | None = None
    wallet_id: WalletId
    account_label: str
    txid: TxId
    address: str | None = None
    category: Category
    amount: Decimal
    confirmations: int = 0
    occurred_at: datetime | None = None
    received_at: datetime | None = None
    confirmed: bool = False

    @model_validator(mode="after")
    def _validate_fields(self) -> Transaction:
        if not self.txid:
            raise ValueError("Transaction.txid must be non-empty")
        if self.amount < 0:
            raise ValueError("Transaction.amount must be >= 0")
        if self.confirmations < 0:
            raise ValueError("Transaction.confirmations must be >= 0")
        return self

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount if self.category == Category.SEND else self.amount


class Transfer(BaseModel):
    """One half of an internal movement between two accounts of a wallet.

    Sign convention:
    - ``send`` records carry a negative amount and are booked against the sender.
    - ``receive`` records carry a positive amount and are booked against the recipient.
    """

    id: int | None = None
    wallet_id: WalletId
    pair_id: PairId
    timestamp: datetime
    sender_id: AccountId
    recipient_id: AccountId
    category: Category
    amount: Decimal
    comment: str | None = None

    @model_validator(mode="after")
    def _validate_amount(self) -> Transfer:
        if self.amount == 0:
            raise ValueError("Transfer.amount must be non-zero")
        if self.category == Category.SEND and self.amount > 0:
            raise ValueError("send transfers must carry a negative amount")
        if self.category == Category.RECEIVE and self.amount < 0:
            raise ValueError("receive transfers must carry a positive amount")
        if not has_valid_precision(self.amount):
            raise ValueError(f"Transfer.amount must have at most {AMOUNT_DECIMALS} fractional digits")
        return self


class DaemonEntry(BaseModel):
    """One row of the daemon's ``listtransactions`` output."""

    model_config = ConfigDict(extra="ignore")

    category: str
    account: str = Field(validation_alias=AliasChoices("account", "label"))
    txid: TxId
    address: str | None = None
    amount: Decimal
    confirmations: int
    time: int | None = None
    timereceived: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_amount(cls, data: Any) -> Any:
        # Floats from a plain json decoder would lose precision.
        if isinstance(data, dict) and isinstance(data.get("amount"), float):
            data = {**data, "amount": Decimal(str(data["amount"]))}
        return data


class OperationResult(BaseModel):
    accepted: bool
    reason: DeclineReason | None = None
    detail: str | None = None
    reference: str | None = None

    @classmethod
    def declined(cls, reason: DeclineReason, detail: str | None = None) -> OperationResult:
        return cls(accepted=False, reason=reason, detail=detail)

    @classmethod
    def ok(cls, reference: str) -> OperationResult:
        return cls(accepted=True, reference=reference)

    def __bool__(self) -> bool:
        return self.accepted
