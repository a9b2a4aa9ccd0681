"""
mandate-agent: autonomous prediction market trading under a delegated mandate.

The agent reads its spending authorization from chain every cycle, decides
with a threshold strategy, clamps size to the mandate and trades through a
smart account. Premium signals are bought per request over x402.
"""

__version__ = "0.1.0"

from .errors import (
    AgentError,
    ChallengeError,
    ConfigError,
    ExecutionError,
    InsufficientBalanceError,
    NetworkError,
    PaymentError,
    PaymentMethodNotImplementedError,
    PaymentRejectedError,
    PaymentTimeoutError,
    ProtocolError,
    RpcError,
)
from .mandate import Mandate
from .market import Market, MarketStatus, Outcome, TradeDirection, TradeSignal, estimate_yes_probability
from .mandate_store import MandateStoreClient
from .market_client import MarketStateClient
from .x402_types import DataUsageLog, PaymentChallenge, PaymentConfig, PaymentMethod, PaymentProof
from .x402_client import GatedDataClient
from .strategy import ThresholdStrategy
from .position_sizer import PositionSizer, size_position
from .tx_builder import MarketTradeBuilder, PolicyTradeBuilder, TradeRoute, build_trade_builder
from .executor import ExecutionResult, TradeExecutor
from .audit import AuditTrail, EventType
from .config import AgentConfig, ServerSettings
from .agent import Agent

__all__ = [
    "AgentError", "ChallengeError", "ConfigError", "ExecutionError",
    "InsufficientBalanceError", "NetworkError", "PaymentError", "PaymentMethodNotImplementedError",
    "PaymentRejectedError", "PaymentTimeoutError", "ProtocolError", "RpcError",
    "Mandate", "Market", "MarketStatus", "Outcome", "TradeDirection", "TradeSignal",
    "estimate_yes_probability", "MandateStoreClient", "MarketStateClient",
    "DataUsageLog", "PaymentChallenge", "PaymentConfig", "PaymentMethod", "PaymentProof",
    "GatedDataClient", "ThresholdStrategy", "PositionSizer", "size_position",
    "MarketTradeBuilder", "PolicyTradeBuilder", "TradeRoute", "build_trade_builder",
    "ExecutionResult", "TradeExecutor", "AuditTrail", "EventType",
    "AgentConfig", "ServerSettings", "Agent",
]
