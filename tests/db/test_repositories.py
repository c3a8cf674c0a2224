from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from db.repositories import LedgerStore
from domain.ledger import Balance, Category, PairId, Transaction, Transfer, Wallet
from tests.constants import ALICE, BOB, BTC, LTC


@pytest.fixture()
def wallet(store: LedgerStore) -> Wallet:
    return store.create_wallet(BTC, 6)


def _transaction(wallet: Wallet, txid: str, *, label: str = ALICE, amount: str = "1.5") -> Transaction:
    return Transaction(
        wallet_id=wallet.id,
        account_label=label,
        txid=txid,
        address="1Addr",
        category=Category.RECEIVE,
        amount=Decimal(amount),
        confirmations=1,
        occurred_at=datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


def _pair(wallet: Wallet, sender_id, recipient_id, amount: str) -> tuple[Transfer, Transfer]:
    send = Transfer(
        wallet_id=wallet.id,
        pair_id=PairId(uuid4()),
        timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc),
        sender_id=sender_id,
        recipient_id=recipient_id,
        category=Category.SEND,
        amount=-Decimal(amount),
        comment="rent",
    )
    receive = send.model_copy(update={"category": Category.RECEIVE, "amount": Decimal(amount)})
    return send, receive


def test_create_and_find_wallet(store: LedgerStore, wallet: Wallet) -> None:
    assert store.find_wallet("btc") == wallet
    assert store.find_wallet(LTC) is None
    assert store.get_or_create_wallet(BTC, 3).confirmations == 6

    with pytest.raises(ValueError):
        store.create_wallet(BTC, 1)


def test_account_labels_are_unique_per_wallet(store: LedgerStore, wallet: Wallet) -> None:
    account = store.create_account(wallet.id, ALICE)
    other_wallet = store.create_wallet(LTC, 3)

    assert store.find_account(wallet.id, ALICE) == account
    assert store.get_account(wallet.id, account.id) == account
    assert store.get_account(other_wallet.id, account.id) is None
    assert store.create_account(other_wallet.id, ALICE).wallet_id == other_wallet.id

    with pytest.raises(ValueError):
        store.create_account(wallet.id, ALICE)


def test_transactions_keep_insertion_order_and_timezone(store: LedgerStore, wallet: Wallet) -> None:
    store.add_transaction(_transaction(wallet, "tx-b"))
    store.add_transaction(_transaction(wallet, "tx-a", label=BOB))

    records = store.list_transactions(wallet.id)

    assert [record.txid for record in records] == ["tx-b", "tx-a"]
    assert records[0].occurred_at == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert [record.txid for record in store.list_transactions(wallet.id, account_label=BOB)] == ["tx-a"]
    assert store.find_transaction(wallet.id, "tx-a") == records[1]

    with pytest.raises(ValueError):
        store.add_transaction(_transaction(wallet, "tx-a"))


def test_confirmation_update_never_unconfirms(store: LedgerStore, wallet: Wallet) -> None:
    created = store.add_transaction(_transaction(wallet, "tx-1"))
    assert created.id is not None

    confirmed = store.update_transaction_confirmations(created.id, 6, confirmed=True)
    regressed = store.update_transaction_confirmations(created.id, 2, confirmed=False)

    assert confirmed.confirmed
    assert regressed.confirmed
    assert regressed.confirmations == 2
    assert store.list_transactions(wallet.id, confirmed=False) == []


def test_delete_transactions_rewinds_cursor(store: LedgerStore, wallet: Wallet) -> None:
    store.add_transaction(_transaction(wallet, "tx-1"))
    store.add_transaction(_transaction(wallet, "tx-2"))
    store.advance_cursor(wallet.id, 2)

    removed = store.delete_transactions(wallet.id)

    assert removed == 2
    assert store.list_transactions(wallet.id) == []
    assert store.get_wallet(wallet.id).transaction_checked_count == 0


def test_references_are_deduplicated(store: LedgerStore, wallet: Wallet) -> None:
    account = store.create_account(wallet.id, ALICE)

    store.add_deposit_reference(account.id, "tx-1", total_received=Decimal("1"))
    store.add_deposit_reference(account.id, "tx-1")
    store.add_withdrawal_reference(account.id, "tx-9")
    updated = store.add_withdrawal_reference(account.id, "tx-9")

    assert updated.deposit_ids == ["tx-1"]
    assert updated.withdrawal_ids == ["tx-9"]
    assert updated.total_received == Decimal("1")


def test_transfer_pair_is_listed_per_account(store: LedgerStore, wallet: Wallet) -> None:
    alice = store.create_account(wallet.id, ALICE)
    bob = store.create_account(wallet.id, BOB)

    send, receive = store.add_transfer_pair(*_pair(wallet, alice.id, bob.id, "2.5"))

    assert send.id is not None and receive.id is not None
    assert store.list_transfers(wallet.id, account_id=alice.id) == [send]
    assert store.list_transfers(wallet.id, account_id=bob.id) == [receive]
    assert sum(transfer.amount for transfer in store.list_transfers(wallet.id)) == 0


def test_unbalanced_transfer_pair_is_rejected(store: LedgerStore, wallet: Wallet) -> None:
    alice = store.create_account(wallet.id, ALICE)
    bob = store.create_account(wallet.id, BOB)
    send, receive = _pair(wallet, alice.id, bob.id, "2.5")

    with pytest.raises(ValueError):
        store.add_transfer_pair(send, receive.model_copy(update={"amount": Decimal("2")}))

    assert store.list_transfers(wallet.id) == []


def test_atomic_block_rolls_back_every_write(store: LedgerStore, wallet: Wallet) -> None:
    account = store.create_account(wallet.id, ALICE)

    with pytest.raises(RuntimeError):
        with store.atomic():
            store.add_transaction(_transaction(wallet, "tx-1"))
            store.update_account_balance(account.id, Balance(unconfirmed=Decimal("1.5"), confirmed=Decimal(0)))
            store.advance_cursor(wallet.id)
            raise RuntimeError("boom")

    assert store.list_transactions(wallet.id) == []
    assert store.get_wallet(wallet.id).transaction_checked_count == 0
    reloaded = store.find_account(wallet.id, ALICE)
    assert reloaded is not None
    assert reloaded.unconfirmed_balance == Decimal(0)
