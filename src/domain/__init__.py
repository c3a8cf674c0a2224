"""Domain models and types for the coin ledger.

This package contains in-memory (Pydantic) models describing wallets,
accounts, daemon transactions and internal transfers, the balance
aggregation rules and the daemon gateway interface. They are independent
from persistence models so that business logic and testing can evolve
without DB coupling.
"""

__all__ = [
    "balances",
    "gateway",
    "ledger",
]
