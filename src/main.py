from __future__ import annotations

import argparse
import logging
from decimal import Decimal, InvalidOperation
from typing import Sequence

from clients.coind import build_client
from config import AppSettings, config
from db.db import init_db
from db.repositories import LedgerStore
from domain.ledger import Balance, OperationResult
from services.wallet_service import WalletService
from utils.formatting import format_decimal


def build_wallet_service(settings: AppSettings) -> WalletService:
    store = LedgerStore(init_db(db_file=settings.db_file))
    return WalletService.open(
        store=store,
        gateway=build_client(settings),
        currency=settings.wallet_currency,
        confirmations=settings.wallet_confirmations,
    )


def parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {value}") from exc


def print_balance(name: str, balance: Balance) -> None:
    print(
        f"  {name:<20} confirmed={format_decimal(balance.confirmed):>16} "
        f"unconfirmed={format_decimal(balance.unconfirmed):>16}"
    )


def print_result(result: OperationResult) -> int:
    if result.accepted:
        print(f"OK {result.reference}")
        return 0
    print(f"DECLINED {result.reason}: {result.detail}")
    return 1


def run(service: WalletService, args: argparse.Namespace) -> int:
    command = args.command

    if command == "create-account":
        account = service.create_account(args.label)
        print(f"Created account {account.label} ({account.id})")
        return 0

    if command == "new-address":
        print(service.generate_address(args.label))
        return 0

    if command == "sync":
        report = service.sync()
        print(
            f"Examined {report.examined} entries: {report.created} created, {report.updated} updated, "
            f"{report.skipped} skipped, {report.malformed} malformed, {report.promoted} confirmed"
            + (" (history reset)" if report.reset else "")
        )
        return 0

    if command == "sync-tx":
        report = service.sync_transaction(args.txid)
        print(f"Confirmed {report.promoted} transaction(s)")
        return 0

    if command == "balance":
        wallet = service.wallet
        print(f"Wallet {wallet.currency} (threshold {wallet.confirmations} confirmations):")
        print_balance("<wallet>", wallet.balance)
        for label, balance in service.account_balances().items():
            print_balance(label, balance)
        if args.daemon:
            print_balance("<daemon>", service.daemon_balance())
        return 0

    if command == "transfer":
        sender = service.account(args.sender)
        recipient = service.account(args.recipient)
        if sender is None or recipient is None:
            print(f"Unknown account: {args.sender if sender is None else args.recipient}")
            return 1
        return print_result(service.transfer(sender, recipient, args.amount, args.comment))

    if command == "withdraw":
        account = service.account(args.label)
        if account is None:
            print(f"Unknown account: {args.label}")
            return 1
        return print_result(service.withdraw(account, args.address, args.amount))

    if command == "audit":
        issues = service.audit(include_daemon=args.daemon)
        for issue in issues:
            print(f"{issue.kind}: {issue.description}")
        if any(issue.fatal for issue in issues):
            return 1
        print("Ledger consistent")
        return 0

    if command == "encrypt":
        encrypted = service.encrypt(args.passphrase)
        print("Wallet encrypted" if encrypted else "Wallet encryption failed")
        return 0 if encrypted else 1

    raise ValueError(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keep the account ledger in step with the coin daemon.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-account", help="Create a labeled account.")
    create.add_argument("label")

    address = sub.add_parser("new-address", help="Generate a deposit address for an account.")
    address.add_argument("label")

    sub.add_parser("sync", help="Ingest new daemon transactions and promote confirmations.")

    sync_tx = sub.add_parser("sync-tx", help="Refresh a single transaction.")
    sync_tx.add_argument("txid")

    balance = sub.add_parser("balance", help="Show wallet and account balances.")
    balance.add_argument("--daemon", action="store_true", help="Also show the daemon's balance.")

    transfer = sub.add_parser("transfer", help="Move funds between two accounts.")
    transfer.add_argument("sender")
    transfer.add_argument("recipient")
    transfer.add_argument("amount", type=parse_amount)
    transfer.add_argument("--comment")

    withdraw = sub.add_parser("withdraw", help="Send funds from an account to an external address.")
    withdraw.add_argument("label")
    withdraw.add_argument("address")
    withdraw.add_argument("amount", type=parse_amount)

    audit = sub.add_parser("audit", help="Check ledger integrity.")
    audit.add_argument("--daemon", action="store_true", help="Also compare against the daemon's balance.")

    encrypt = sub.add_parser("encrypt", help="Encrypt the daemon wallet.")
    encrypt.add_argument("passphrase")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    service = build_wallet_service(config())
    return run(service, args)


if __name__ == "__main__":
    raise SystemExit(main())
