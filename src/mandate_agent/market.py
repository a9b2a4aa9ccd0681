"""
Prediction market projection, trade signal types and probability estimate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional, Sequence

from .mandate import Mandate, normalize_address
from .units import round_percent


NEUTRAL_PROBABILITY = 50


class MarketStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    SETTLED = "SETTLED"

    @classmethod
    def from_index(cls, index: int) -> "MarketStatus":
        members = list(cls)
        if not 0 <= index < len(members):
            raise ValueError(f"Unknown market status index: {index}")
        return members[index]


class Outcome(IntEnum):
    UNRESOLVED = 0
    YES = 1
    NO = 2


class TradeDirection(IntEnum):
    YES = 1
    NO = 2


@dataclass
class Market:
    """Binary prediction market state as read from the market contract."""

    market_id: int
    question: str
    created_at: int
    resolution_time: int
    status: MarketStatus
    outcome: Outcome
    yes_liquidity: int
    no_liquidity: int
    resolver: str
    premium_yes_probability: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status == MarketStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "question": self.question,
            "created_at": self.created_at,
            "resolution_time": self.resolution_time,
            "status": self.status.value,
            "outcome": self.outcome.name,
            "yes_liquidity": str(self.yes_liquidity),
            "no_liquidity": str(self.no_liquidity),
            "resolver": self.resolver,
            "premium_yes_probability": self.premium_yes_probability,
        }

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> "Market":
        """Build from the decoded `getMarket` tuple."""
        (
            market_id,
            question,
            created_at,
            resolution_time,
            status,
            outcome,
            yes_liquidity,
            no_liquidity,
            resolver,
        ) = values
        yes, no = int(yes_liquidity), int(no_liquidity)
        if yes < 0 or no < 0:
            raise ValueError("Liquidity values must be non-negative")
        return cls(
            market_id=int(market_id),
            question=str(question),
            created_at=int(created_at),
            resolution_time=int(resolution_time),
            status=MarketStatus.from_index(int(status)),
            outcome=Outcome(int(outcome)),
            yes_liquidity=yes,
            no_liquidity=no,
            resolver=normalize_address(resolver),
        )


def local_yes_probability(market: Market) -> int:
    """Liquidity-ratio estimate of the YES probability (0-100)."""
    total = market.yes_liquidity + market.no_liquidity
    if total == 0:
        return NEUTRAL_PROBABILITY
    return round_percent(market.yes_liquidity, total)


def estimate_yes_probability(market: Market) -> float:
    """Premium estimate when one was fetched, local estimate otherwise."""
    if market.premium_yes_probability is not None:
        return market.premium_yes_probability
    return local_yes_probability(market)


@dataclass
class TradeSignal:
    """Directional recommendation produced by the strategy."""

    market_id: int
    direction: TradeDirection
    confidence: int
    reasoning: str
    suggested_size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "direction": self.direction.name,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "suggested_size": str(self.suggested_size),
        }


@dataclass
class StrategyContext:
    markets: list[Market]
    mandate: Mandate
    agent_id: int
    timestamp: int


@dataclass
class StrategyResult:
    signal: Optional[TradeSignal]
    next_check_time: int
