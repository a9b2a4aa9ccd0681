"""
Environment-driven configuration for the agent and the gated-data server.

`AgentConfig.from_env()` only parses; `validate()` enforces the rules and
raises ConfigError. Both run once, before the loop starts.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError
from .mandate import is_address
from .storage import default_data_dir
from .x402_types import PaymentMethod


BASE_SEPOLIA_CHAIN_ID = 84532
DEFAULT_MAX_POSITION_SIZE = 1000 * 10**18
DEFAULT_MOCK_BALANCE = 10 * 10**18
DEFAULT_PAYMENT_ADDRESS = "0x000000000000000000000000000000000000dEaD"

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _get(env: Mapping[str, str], key: str, default: Optional[str] = None) -> str:
    value = env.get(key)
    if value is None or value.strip() == "":
        if default is None:
            raise ConfigError(f"Missing required environment variable: {key}")
        return default
    return value.strip()


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = _get(env, key, str(default))
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(env, key, str(default))
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


@dataclass
class AgentConfig:
    agent_private_key: str
    smart_account_address: str
    rpc_url: str
    prediction_market_address: str
    delegation_policy_address: str
    agent_id: int = 1
    chain_id: int = BASE_SEPOLIA_CHAIN_ID
    x402_base_url: str = "http://localhost:3000"
    payment_method: PaymentMethod = PaymentMethod.MOCK
    mock_balance: int = DEFAULT_MOCK_BALANCE
    rebalance_interval: int = 3600
    max_position_size: int = DEFAULT_MAX_POSITION_SIZE
    market_ids: list[int] = field(default_factory=lambda: [1])
    trade_route: str = "policy"
    use_premium_signals: bool = True
    http_timeout_seconds: float = 5.0
    dry_run: bool = False
    data_dir: Path = field(default_factory=default_data_dir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        env = os.environ if environ is None else environ

        method_raw = _get(env, "PAYMENT_METHOD", PaymentMethod.MOCK.value).lower()
        try:
            payment_method = PaymentMethod(method_raw)
        except ValueError as e:
            raise ConfigError(f"PAYMENT_METHOD must be one of mock, blockchain, cached; got {method_raw!r}") from e

        market_ids_raw = _get(env, "MARKET_IDS", "1")
        try:
            market_ids = [int(part) for part in market_ids_raw.split(",") if part.strip()]
        except ValueError as e:
            raise ConfigError(f"MARKET_IDS must be comma-separated integers, got {market_ids_raw!r}") from e

        return cls(
            agent_private_key=_get(env, "AGENT_PRIVATE_KEY"),
            smart_account_address=_get(env, "SMART_ACCOUNT_ADDRESS"),
            rpc_url=_get(env, "RPC_URL"),
            prediction_market_address=_get(env, "PREDICTION_MARKET_ADDRESS"),
            delegation_policy_address=_get(env, "DELEGATION_POLICY_ADDRESS"),
            agent_id=_get_int(env, "AGENT_ID", 1),
            chain_id=_get_int(env, "CHAIN_ID", BASE_SEPOLIA_CHAIN_ID),
            x402_base_url=_get(env, "X402_BASE_URL", "http://localhost:3000"),
            payment_method=payment_method,
            mock_balance=_get_int(env, "MOCK_BALANCE", DEFAULT_MOCK_BALANCE),
            rebalance_interval=_get_int(env, "REBALANCE_INTERVAL", 3600),
            max_position_size=_get_int(env, "MAX_POSITION_SIZE", DEFAULT_MAX_POSITION_SIZE),
            market_ids=market_ids,
            trade_route=_get(env, "TRADE_ROUTE", "policy").lower(),
            use_premium_signals=_get_bool(env, "USE_PREMIUM_SIGNALS", True),
            http_timeout_seconds=_get_float(env, "HTTP_TIMEOUT_SECONDS", 5.0),
            dry_run=_get_bool(env, "DRY_RUN", False),
            data_dir=default_data_dir(env),
        )

    def validate(self) -> None:
        if not _PRIVATE_KEY_RE.match(self.agent_private_key):
            raise ConfigError("AGENT_PRIVATE_KEY must be 0x followed by 64 hex characters")
        for name in ("smart_account_address", "prediction_market_address", "delegation_policy_address"):
            if not is_address(getattr(self, name)):
                raise ConfigError(f"{name.upper()} must be a valid Ethereum address")
        if not self.rpc_url.startswith(("http://", "https://")):
            raise ConfigError("RPC_URL must be an http(s) URL")
        if self.agent_id < 0:
            raise ConfigError("AGENT_ID must be non-negative")
        if self.max_position_size <= 0:
            raise ConfigError("MAX_POSITION_SIZE must be positive")
        if self.mock_balance < 0:
            raise ConfigError("MOCK_BALANCE must be non-negative")
        if self.rebalance_interval <= 0:
            raise ConfigError("REBALANCE_INTERVAL must be positive")
        if self.http_timeout_seconds <= 0:
            raise ConfigError("HTTP_TIMEOUT_SECONDS must be positive")
        if not self.market_ids:
            raise ConfigError("MARKET_IDS must name at least one market")
        if self.trade_route not in ("market", "policy"):
            raise ConfigError("TRADE_ROUTE must be 'market' or 'policy'")

    def redacted(self) -> dict:
        """Config as a dict with the private key masked, for logs."""
        return {
            "agent_id": self.agent_id,
            "smart_account_address": self.smart_account_address,
            "chain_id": self.chain_id,
            "rpc_url": self.rpc_url,
            "prediction_market_address": self.prediction_market_address,
            "delegation_policy_address": self.delegation_policy_address,
            "x402_base_url": self.x402_base_url,
            "payment_method": self.payment_method.value,
            "market_ids": list(self.market_ids),
            "max_position_size": str(self.max_position_size),
            "rebalance_interval": self.rebalance_interval,
            "trade_route": self.trade_route,
            "use_premium_signals": self.use_premium_signals,
            "dry_run": self.dry_run,
            "agent_private_key": self.agent_private_key[:6] + "...",
        }


@dataclass
class ServerSettings:
    payment_address: str = DEFAULT_PAYMENT_ADDRESS
    price_wei: int = 100
    challenge_ttl: int = 300
    chain_id: int = BASE_SEPOLIA_CHAIN_ID
    token: str = "0x0"
    ledger_path: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerSettings":
        env = os.environ if environ is None else environ
        ledger_raw = env.get("X402_LEDGER_PATH")
        settings = cls(
            payment_address=_get(env, "X402_PAYMENT_ADDRESS", DEFAULT_PAYMENT_ADDRESS),
            price_wei=_get_int(env, "X402_PRICE_WEI", 100),
            challenge_ttl=_get_int(env, "X402_CHALLENGE_TTL", 300),
            chain_id=_get_int(env, "X402_CHAIN_ID", BASE_SEPOLIA_CHAIN_ID),
            ledger_path=Path(ledger_raw).expanduser() if ledger_raw else None,
        )
        if settings.price_wei < 0:
            raise ConfigError("X402_PRICE_WEI must be non-negative")
        if settings.challenge_ttl <= 0:
            raise ConfigError("X402_CHALLENGE_TTL must be positive")
        return settings
