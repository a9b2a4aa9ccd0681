"""Clamp suggested trade sizes to the mandate limit."""

from __future__ import annotations

import logging

from .mandate import Mandate
from .market import TradeSignal
from .units import format_ether

logger = logging.getLogger(__name__)


def size_position(signal: TradeSignal, mandate: Mandate) -> int:
    """Return min(suggested size, mandate max trade size)."""
    logger.debug(
        "Sizing position: suggested=%s max=%s",
        signal.suggested_size,
        mandate.max_trade_size,
    )
    position = min(signal.suggested_size, mandate.max_trade_size)
    logger.info(
        "Position sized: market=%s direction=%s size=%s (%s)",
        signal.market_id,
        signal.direction.name,
        format_ether(position),
        signal.reasoning,
    )
    return position


class PositionSizer:
    def size_position(self, signal: TradeSignal, mandate: Mandate) -> int:
        return size_position(signal, mandate)
