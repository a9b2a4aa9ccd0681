"""
Threshold strategy.

Buys YES when the YES probability is above 60, NO when it is below 40, and
waits otherwise. The first open market that crosses a threshold wins.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from .market import (
    Market,
    StrategyContext,
    StrategyResult,
    TradeDirection,
    TradeSignal,
    estimate_yes_probability,
)
from .units import floor_percent, scale_by_percent

logger = logging.getLogger(__name__)


YES_THRESHOLD = 60
NO_THRESHOLD = 40
INACTIVE_RECHECK_SECONDS = 60
NO_SIGNAL_RECHECK_SECONDS = 300
MIN_SIZE_PERCENT = 50


def suggested_size_percent(confidence: Decimal | float | int) -> int:
    """Percent of the mandate max to suggest: 60 -> 50%, 80 -> 100%."""
    raw = (Decimal(str(confidence)) - 50) * 100 / 30
    return max(MIN_SIZE_PERCENT, floor_percent(raw))


class ThresholdStrategy:
    def __init__(self, yes_threshold: int = YES_THRESHOLD, no_threshold: int = NO_THRESHOLD):
        self.yes_threshold = yes_threshold
        self.no_threshold = no_threshold

    def run(self, context: StrategyContext) -> StrategyResult:
        logger.info("Running strategy for agent %s", context.agent_id)

        if not context.mandate.is_active:
            logger.warning("Mandate is inactive, skipping trade (agent %s)", context.agent_id)
            return StrategyResult(signal=None, next_check_time=context.timestamp + INACTIVE_RECHECK_SECONDS)

        for market in context.markets:
            if not market.is_open:
                continue
            yes_probability = estimate_yes_probability(market)
            logger.debug("Market %s: YES probability %s", market.market_id, yes_probability)

            if yes_probability > self.yes_threshold:
                signal = self._signal(market, TradeDirection.YES, yes_probability, context)
            elif yes_probability < self.no_threshold:
                signal = self._signal(market, TradeDirection.NO, 100 - yes_probability, context)
            else:
                continue
            # Re-check offset is the mandate expiry field, as deployed.
            return StrategyResult(signal=signal, next_check_time=context.timestamp + context.mandate.expiry_time)

        logger.info("No trade signal generated")
        return StrategyResult(signal=None, next_check_time=context.timestamp + NO_SIGNAL_RECHECK_SECONDS)

    def _signal(
        self,
        market: Market,
        direction: TradeDirection,
        confidence: float,
        context: StrategyContext,
    ) -> TradeSignal:
        percent = suggested_size_percent(confidence)
        threshold = self.yes_threshold if direction == TradeDirection.YES else 100 - self.no_threshold
        return TradeSignal(
            market_id=market.market_id,
            direction=direction,
            confidence=int(Decimal(str(confidence)).quantize(Decimal(1), rounding=ROUND_HALF_UP)),
            reasoning=f"{direction.name} probability {confidence:.1f}% > {threshold}% threshold",
            suggested_size=scale_by_percent(context.mandate.max_trade_size, percent),
        )
