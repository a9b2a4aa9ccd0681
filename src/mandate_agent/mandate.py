"""
Mandate projection and address helpers.

A Mandate is the delegated, time-boxed spending authorization a principal
smart account grants to an agent. The agent never writes it; it is re-read
from the DelegationPolicy contract every cycle.
"""

from __future__ import annotations

import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Sequence


ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


@dataclass
class Mandate:
    """Delegated authorization from a smart account to an agent."""

    agent: str
    max_trade_size: int
    allowed_markets: list[str] = field(default_factory=list)
    expiry_time: int = 0
    is_active: bool = False
    created_at: int = 0

    def is_expired(self, now: Optional[int] = None) -> bool:
        current = int(time.time()) if now is None else now
        return self.expiry_time < current

    def allows_market(self, market: str) -> bool:
        target = market.strip().lower()
        return any(m.strip().lower() == target for m in self.allowed_markets)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["max_trade_size"] = str(self.max_trade_size)
        return d

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> "Mandate":
        """Build from the decoded `getMandate` tuple."""
        agent, max_trade_size, allowed_markets, expiry_time, is_active, created_at = values
        return cls(
            agent=normalize_address(agent),
            max_trade_size=int(max_trade_size),
            allowed_markets=[normalize_address(m) for m in allowed_markets],
            expiry_time=int(expiry_time),
            is_active=bool(is_active),
            created_at=int(created_at),
        )


def normalize_address(address: str) -> str:
    """Normalize Ethereum addresses to lower-case hex."""
    candidate = address.strip()
    if candidate.startswith(("0X", "0x")):
        candidate = "0x" + candidate[2:]
    if not _ADDRESS_RE.match(candidate):
        raise ValueError(f"Invalid Ethereum address: {address}")
    return "0x" + candidate[2:].lower()


def is_address(address: str) -> bool:
    try:
        normalize_address(address)
    except (ValueError, AttributeError):
        return False
    return True
