from __future__ import annotations

from decimal import Decimal

from domain.ledger import SMALLEST_UNIT


def format_decimal(value: Decimal) -> str:
    """Render an amount in plain notation, trimmed to the currency's smallest unit."""
    normalized = value.quantize(SMALLEST_UNIT).normalize()
    if normalized == 0:
        return "0"
    return format(normalized, "f")
