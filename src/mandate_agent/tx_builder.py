"""
Trade call-data builders.

Two routes produce the inner call the smart account will execute:

    market  -> PredictionMarket.trade(marketId, agentId, shareSize, direction)
    policy  -> DelegationPolicy.executeTrade(marketId, agentId, shareSize, direction)

The policy route lets the registry re-check the mandate on-chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .errors import ConfigError
from .market import TradeDirection
from .mandate import normalize_address
from .rpc import encode_function_call

logger = logging.getLogger(__name__)


TRADE_ARG_TYPES = ["uint256", "uint256", "uint256", "uint8"]
MARKET_TRADE_SIGNATURE = "trade(uint256,uint256,uint256,uint8)"
POLICY_TRADE_SIGNATURE = "executeTrade(uint256,uint256,uint256,uint8)"


class TradeRoute(str, Enum):
    MARKET = "market"
    POLICY = "policy"


@dataclass
class TradeTransaction:
    to: str
    data: str
    value: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"to": self.to, "data": self.data, "value": str(self.value)}


class TradeBuilder(Protocol):
    def build_trade_transaction(
        self, market_id: int, agent_id: int, size: int, direction: TradeDirection
    ) -> TradeTransaction: ...


class _CallDataBuilder:
    signature: str = ""

    def __init__(self, target_address: str):
        self.target_address = normalize_address(target_address)

    def build_trade_call_data(self, market_id: int, agent_id: int, size: int, direction: TradeDirection) -> str:
        if size <= 0:
            raise ValueError(f"Trade size must be positive, got {size}")
        logger.debug(
            "Building %s call data: market=%s agent=%s size=%s direction=%s",
            self.signature,
            market_id,
            agent_id,
            size,
            TradeDirection(direction).name,
        )
        return encode_function_call(
            self.signature,
            TRADE_ARG_TYPES,
            [int(market_id), int(agent_id), int(size), int(direction)],
        )

    def build_trade_transaction(
        self, market_id: int, agent_id: int, size: int, direction: TradeDirection
    ) -> TradeTransaction:
        data = self.build_trade_call_data(market_id, agent_id, size, direction)
        return TradeTransaction(to=self.target_address, data=data, value=0)


class MarketTradeBuilder(_CallDataBuilder):
    """Calls the PredictionMarket directly."""

    signature = MARKET_TRADE_SIGNATURE


class PolicyTradeBuilder(_CallDataBuilder):
    """Routes the trade through the DelegationPolicy contract."""

    signature = POLICY_TRADE_SIGNATURE


def build_trade_builder(route: TradeRoute | str, config) -> TradeBuilder:
    """Select the builder for `route` using addresses from an AgentConfig."""
    try:
        selected = TradeRoute(route)
    except ValueError as e:
        raise ConfigError(f"Unknown trade route: {route}") from e
    if selected == TradeRoute.MARKET:
        return MarketTradeBuilder(config.prediction_market_address)
    return PolicyTradeBuilder(config.delegation_policy_address)
