"""Integer amount helpers: wire parsing, percentage scaling and display."""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any


WEI_PER_ETHER = 10**18
_DISPLAY_QUANT = Decimal("0.000001")


def parse_amount(value: Any, field_name: str = "amount") -> int:
    """Parse a non-negative integer amount from a decimal string or int."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer amount")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValueError(f"{field_name} must be a decimal integer string, got {value!r}")
    if parsed < 0:
        raise ValueError(f"{field_name} must be non-negative")
    return parsed


def format_amount(value: int) -> str:
    """Serialize an amount for the wire (decimal string)."""
    return str(int(value))


def round_percent(numerator: int, denominator: int) -> int:
    """Return round(100 * numerator / denominator), half-up, on integers."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    ratio = Decimal(numerator) * 100 / Decimal(denominator)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def floor_percent(value: Decimal | float | int | str) -> int:
    """Floor a percentage value to an integer."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_FLOOR))


def scale_by_percent(amount: int, percent: int) -> int:
    """Return amount * percent / 100 with integer floor division."""
    return (int(amount) * int(percent)) // 100


def wei_to_ether_decimal(value: int) -> Decimal:
    """Convert integer wei to Decimal ether."""
    return (Decimal(value) / Decimal(WEI_PER_ETHER)).quantize(_DISPLAY_QUANT)


def format_ether(value: int) -> str:
    """Format integer wei as an ether string for logs and CLI output."""
    return f"{wei_to_ether_decimal(value)} ETH"
