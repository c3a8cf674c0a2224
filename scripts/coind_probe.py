# flake8: noqa E402
# Run via uv so project deps are loaded, e.g.:
# uv run scripts/coind_probe.py --count 20
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the src directory is importable when the script is invoked via uv/python directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pydantic import ValidationError

from clients.coind import build_client
from config import config
from domain.ledger import DaemonEntry


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show how the ledger would read the daemon's recent history.")
    parser.add_argument("--count", type=int, default=10, help="Number of recent entries to fetch (default: 10).")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = config()
    client = build_client(settings)

    rows = client.list_transactions(args.count)
    print(f"Fetched {len(rows)} entries from {client.url}")
    for index, row in enumerate(rows):
        try:
            entry = DaemonEntry.model_validate(row)
        except ValidationError as exc:
            print(f"  [{index}] malformed ({exc.error_count()} errors): {row}")
            continue
        print(
            f"  [{index}] {entry.category:<8} account={entry.account!r} amount={entry.amount} "
            f"confirmations={entry.confirmations} txid={entry.txid}"
        )

    unconfirmed = client.get_balance(0)
    confirmed = client.get_balance(settings.wallet_confirmations)
    print(f"Daemon balance: unconfirmed={unconfirmed} confirmed={confirmed}")


if __name__ == "__main__":
    main()
