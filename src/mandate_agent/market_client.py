"""Read-only client for PredictionMarket state, with optional premium data."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .errors import AgentError
from .market import Market, estimate_yes_probability
from .mandate import normalize_address
from .rpc import JsonRpcClient
from .x402_client import GatedDataClient
from .x402_types import DataUsageLog, UsageSummary

logger = logging.getLogger(__name__)


GET_MARKET_SIGNATURE = "getMarket(uint256)"
GET_MARKET_RESULT = ["(uint256,string,uint256,uint256,uint8,uint8,uint256,uint256,address)"]
IS_MARKET_OPEN_SIGNATURE = "isMarketOpen(uint256)"


class MarketStateClient:
    def __init__(
        self,
        market_address: str,
        rpc: JsonRpcClient,
        gated: Optional[GatedDataClient] = None,
    ):
        self.market_address = normalize_address(market_address)
        self.rpc = rpc
        self.gated = gated

    def get_market(self, market_id: int, include_premium_signal: bool = False) -> Optional[Market]:
        logger.debug("Fetching market %s (premium=%s)", market_id, include_premium_signal)
        try:
            (raw,) = self.rpc.call_function(
                self.market_address,
                GET_MARKET_SIGNATURE,
                ["uint256"],
                [int(market_id)],
                GET_MARKET_RESULT,
            )
            market = Market.from_abi(raw)
        except (AgentError, ValueError) as e:
            logger.error("Failed to fetch market %s: %s", market_id, e)
            return None

        if include_premium_signal:
            market.premium_yes_probability = self._fetch_premium_probability(market_id)

        logger.debug("Market fetched: %s", market.to_dict())
        return market

    def _fetch_premium_probability(self, market_id: int) -> Optional[float]:
        if self.gated is None:
            logger.debug("Premium data requested but no gated-data client configured")
            return None
        try:
            response = self.gated.fetch_data(f"/market/{market_id}/data")
        except AgentError as e:
            logger.warning("Could not fetch premium market data for %s: %s", market_id, e)
            return None
        return _extract_probability(response.data)

    def is_market_open(self, market_id: int) -> bool:
        try:
            (is_open,) = self.rpc.call_function(
                self.market_address,
                IS_MARKET_OPEN_SIGNATURE,
                ["uint256"],
                [int(market_id)],
                ["bool"],
            )
        except AgentError as e:
            logger.error("Failed to check market %s status: %s", market_id, e)
            return False
        return bool(is_open)

    @staticmethod
    def estimate_yes_probability(market: Market) -> float:
        return estimate_yes_probability(market)

    def get_usage_logs(self) -> list[DataUsageLog]:
        return self.gated.get_usage_logs() if self.gated else []

    def get_usage_summary(self) -> dict[str, UsageSummary]:
        return self.gated.get_usage_summary() if self.gated else {}


def _extract_probability(payload: Any) -> Optional[float]:
    if not isinstance(payload, dict):
        return None
    value = payload.get("yesProbability")
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning("Premium payload has no numeric yesProbability")
        return None
    if not 0 <= value <= 100:
        logger.warning("Premium yesProbability out of range: %s", value)
        return None
    return float(value)
