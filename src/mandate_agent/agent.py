"""
Agent loop.

One sequential loop per agent: read mandate and markets, run the strategy,
size and submit a trade when there is a signal, then sleep until the
strategy's next check time. A failed cycle backs off for a minute and the
loop carries on.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from eth_account import Account

from .audit import AuditTrail, EventType
from .config import AgentConfig
from .executor import ExecutionResult, TradeExecutor
from .mandate_store import MandateStoreClient
from .market import StrategyContext, TradeSignal
from .market_client import MarketStateClient
from .position_sizer import PositionSizer
from .rpc import JsonRpcClient
from .strategy import ThresholdStrategy
from .tx_builder import build_trade_builder
from .units import format_ether
from .x402_client import GatedDataClient
from .x402_types import PaymentConfig

logger = logging.getLogger(__name__)


RETRY_DELAY_SECONDS = 60


class CycleStatus(str, Enum):
    SKIPPED = "skipped"
    NO_SIGNAL = "no_signal"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass
class CycleOutcome:
    status: CycleStatus
    next_check_time: int
    signal: Optional[TradeSignal] = None
    size: Optional[int] = None
    result: Optional[ExecutionResult] = None
    reason: Optional[str] = None


class Agent:
    def __init__(
        self,
        config: AgentConfig,
        mandates: MandateStoreClient,
        markets: MarketStateClient,
        executor: TradeExecutor,
        strategy: Optional[ThresholdStrategy] = None,
        sizer: Optional[PositionSizer] = None,
        audit: Optional[AuditTrail] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.mandates = mandates
        self.markets = markets
        self.executor = executor
        self.strategy = strategy or ThresholdStrategy()
        self.sizer = sizer or PositionSizer()
        self.audit = audit
        self._sleep = sleep
        self._clock = clock
        self.agent_address = Account.from_key(config.agent_private_key).address
        self.is_running = False

    @classmethod
    def from_config(cls, config: AgentConfig, audit: Optional[AuditTrail] = None, **kwargs) -> "Agent":
        """Wire every component from configuration. Raises ConfigError."""
        config.validate()
        rpc = JsonRpcClient(config.rpc_url, timeout_seconds=config.http_timeout_seconds)
        gated = None
        if config.use_premium_signals:
            gated = GatedDataClient(
                config.x402_base_url,
                PaymentConfig(
                    method=config.payment_method,
                    agent_id=config.agent_id,
                    mock_balance=config.mock_balance,
                    timeout_seconds=config.http_timeout_seconds,
                ),
            )
        executor = TradeExecutor(
            rpc,
            build_trade_builder(config.trade_route, config),
            config.agent_private_key,
            config.smart_account_address,
            config.chain_id,
            dry_run=config.dry_run,
        )
        return cls(
            config,
            MandateStoreClient(config.delegation_policy_address, rpc),
            MarketStateClient(config.prediction_market_address, rpc, gated),
            executor,
            audit=audit,
            **kwargs,
        )

    def initialize(self) -> None:
        self.config.validate()
        logger.info(
            "Agent %s initialised: address=%s account=%s route=%s max_position=%s dry_run=%s",
            self.config.agent_id,
            self.agent_address,
            self.config.smart_account_address,
            self.config.trade_route,
            format_ether(self.config.max_position_size),
            self.config.dry_run,
        )
        logger.debug("Configuration: %s", self.config.redacted())

    def _now(self) -> int:
        return int(self._clock())

    def fetch_context(self, now: int) -> tuple[Optional[StrategyContext], str]:
        mandate = self.mandates.get_mandate(self.config.smart_account_address, self.agent_address)
        ok, reason = self.mandates.check_authorization(mandate, self.config.prediction_market_address, now)
        if not ok:
            logger.warning("Cycle skipped: %s", reason)
            return None, reason

        markets = []
        for market_id in self.config.market_ids:
            market = self.markets.get_market(market_id, include_premium_signal=self.config.use_premium_signals)
            if market is not None:
                markets.append(market)
        if not markets:
            logger.error("Could not fetch any market")
            return None, "No market data"

        return StrategyContext(markets=markets, mandate=mandate, agent_id=self.config.agent_id, timestamp=now), "OK"

    def run_once(self) -> CycleOutcome:
        """Run a single decision cycle and report what happened."""
        now = self._now()
        context, reason = self.fetch_context(now)
        if context is None:
            self._audit(EventType.CYCLE_SKIPPED, success=False, reason=reason)
            return CycleOutcome(CycleStatus.SKIPPED, now + RETRY_DELAY_SECONDS, reason=reason)

        result = self.strategy.run(context)
        signal = result.signal
        if signal is None:
            logger.info("Decision: no signal")
            self._audit(EventType.NO_SIGNAL)
            outcome = CycleOutcome(CycleStatus.NO_SIGNAL, result.next_check_time)
        else:
            logger.info("Decision: signal %s", signal.to_dict())
            self._audit(
                EventType.SIGNAL_GENERATED,
                market_id=signal.market_id,
                direction=signal.direction.name,
                amount=signal.suggested_size,
                reason=signal.reasoning,
                details={"confidence": signal.confidence},
            )
            outcome = self._trade(signal, context, result.next_check_time)

        self._report_usage()
        return outcome

    def _trade(self, signal: TradeSignal, context: StrategyContext, next_check_time: int) -> CycleOutcome:
        size = self.sizer.size_position(signal, context.mandate)
        self._audit(
            EventType.POSITION_SIZED,
            market_id=signal.market_id,
            direction=signal.direction.name,
            amount=size,
        )
        execution = self.executor.execute_trade(signal.market_id, self.config.agent_id, size, signal.direction)

        if execution.success:
            logger.info(
                "Trade executed: market=%s direction=%s size=%s tx=%s data_usage=%s",
                signal.market_id,
                signal.direction.name,
                format_ether(size),
                execution.tx_hash,
                self._usage_summary(),
            )
            self._audit(
                EventType.TRADE_EXECUTED,
                market_id=signal.market_id,
                direction=signal.direction.name,
                amount=size,
                tx_hash=execution.tx_hash,
                details={"dry_run": execution.dry_run},
            )
            status = CycleStatus.EXECUTED
        else:
            logger.error(
                "Trade failed: market=%s direction=%s size=%s error=%s",
                signal.market_id,
                signal.direction.name,
                format_ether(size),
                execution.error,
            )
            self._audit(
                EventType.TRADE_FAILED,
                market_id=signal.market_id,
                direction=signal.direction.name,
                amount=size,
                tx_hash=execution.tx_hash,
                success=False,
                reason=execution.error,
            )
            status = CycleStatus.FAILED

        return CycleOutcome(status, next_check_time, signal=signal, size=size, result=execution)

    def _usage_summary(self) -> dict:
        return {key: s.to_wire() for key, s in self.markets.get_usage_summary().items()}

    def _report_usage(self) -> None:
        summary = self._usage_summary()
        logger.info("Agent data usage: %s", summary)
        if summary:
            self._audit(EventType.DATA_USAGE, details=summary)

    def _audit(self, event_type: EventType, **fields) -> None:
        if self.audit is not None:
            self.audit.log(event_type, agent_id=self.config.agent_id, **fields)

    def run(self) -> None:
        self.initialize()
        self.is_running = True
        logger.info(
            "Agent loop starting: agent=%s rebalance_interval=%ss",
            self.config.agent_id,
            self.config.rebalance_interval,
        )

        while self.is_running:
            try:
                outcome = self.run_once()
                if outcome.status == CycleStatus.SKIPPED:
                    logger.warning("Failed to fetch context, retrying in %ss", RETRY_DELAY_SECONDS)
                    delay = RETRY_DELAY_SECONDS
                else:
                    delay = max(0, outcome.next_check_time - self._now())
            except Exception:
                logger.exception("Agent loop error")
                delay = RETRY_DELAY_SECONDS
            logger.debug("Sleeping %ss", delay)
            self._sleep(delay)

        logger.info("Agent loop stopped")

    def stop(self) -> None:
        logger.info("Stopping agent")
        self.is_running = False
