"""Tests for environment configuration."""

from pathlib import Path

import pytest

from mandate_agent.config import (
    BASE_SEPOLIA_CHAIN_ID,
    DEFAULT_PAYMENT_ADDRESS,
    AgentConfig,
    ServerSettings,
)
from mandate_agent.errors import ConfigError
from mandate_agent.x402_types import PaymentMethod


ENV = {
    "AGENT_PRIVATE_KEY": "0x" + "11" * 32,
    "SMART_ACCOUNT_ADDRESS": "0x" + "44" * 20,
    "RPC_URL": "https://sepolia.base.org",
    "PREDICTION_MARKET_ADDRESS": "0x" + "33" * 20,
    "DELEGATION_POLICY_ADDRESS": "0x" + "22" * 20,
}


def _env(**overrides):
    env = dict(ENV)
    env.update(overrides)
    return env


class TestAgentConfig:
    def test_defaults(self):
        config = AgentConfig.from_env(_env(MANDATE_AGENT_HOME="/tmp/agent-home"))

        assert config.agent_id == 1
        assert config.chain_id == BASE_SEPOLIA_CHAIN_ID
        assert config.x402_base_url == "http://localhost:3000"
        assert config.payment_method == PaymentMethod.MOCK
        assert config.rebalance_interval == 3600
        assert config.market_ids == [1]
        assert config.trade_route == "policy"
        assert config.use_premium_signals is True
        assert config.dry_run is False
        assert config.data_dir == Path("/tmp/agent-home")
        config.validate()

    def test_overrides(self):
        config = AgentConfig.from_env(
            _env(
                AGENT_ID="4",
                PAYMENT_METHOD="Cached",
                MARKET_IDS="3, 5,8",
                TRADE_ROUTE="MARKET",
                USE_PREMIUM_SIGNALS="no",
                DRY_RUN="true",
                MOCK_BALANCE="0",
            )
        )

        assert config.agent_id == 4
        assert config.payment_method == PaymentMethod.CACHED
        assert config.market_ids == [3, 5, 8]
        assert config.trade_route == "market"
        assert config.use_premium_signals is False
        assert config.dry_run is True
        assert config.mock_balance == 0

    @pytest.mark.parametrize("missing", sorted(ENV))
    def test_required_variables(self, missing):
        env = _env()
        del env[missing]
        with pytest.raises(ConfigError, match=missing):
            AgentConfig.from_env(env)

    def test_blank_counts_as_missing(self):
        with pytest.raises(ConfigError, match="RPC_URL"):
            AgentConfig.from_env(_env(RPC_URL="  "))

    @pytest.mark.parametrize(
        "key,value",
        [
            ("AGENT_ID", "one"),
            ("PAYMENT_METHOD", "card"),
            ("MARKET_IDS", "1,x"),
            ("DRY_RUN", "maybe"),
            ("HTTP_TIMEOUT_SECONDS", "fast"),
        ],
    )
    def test_unparseable_values(self, key, value):
        with pytest.raises(ConfigError, match=key):
            AgentConfig.from_env(_env(**{key: value}))

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"AGENT_PRIVATE_KEY": "0x1234"}, "AGENT_PRIVATE_KEY"),
            ({"SMART_ACCOUNT_ADDRESS": "0xnope"}, "SMART_ACCOUNT_ADDRESS"),
            ({"RPC_URL": "ws://node"}, "RPC_URL"),
            ({"AGENT_ID": "-1"}, "AGENT_ID"),
            ({"MAX_POSITION_SIZE": "0"}, "MAX_POSITION_SIZE"),
            ({"MOCK_BALANCE": "-5"}, "MOCK_BALANCE"),
            ({"REBALANCE_INTERVAL": "0"}, "REBALANCE_INTERVAL"),
            ({"MARKET_IDS": ","}, "MARKET_IDS"),
            ({"TRADE_ROUTE": "bridge"}, "TRADE_ROUTE"),
        ],
    )
    def test_validate(self, overrides, message):
        config = AgentConfig.from_env(_env(**overrides))
        with pytest.raises(ConfigError, match=message):
            config.validate()

    def test_redacted_masks_key(self):
        redacted = AgentConfig.from_env(_env()).redacted()
        assert redacted["agent_private_key"] == "0x1111..."
        assert "11" * 32 not in str(redacted)


class TestServerSettings:
    def test_defaults(self):
        settings = ServerSettings.from_env({})
        assert settings.payment_address == DEFAULT_PAYMENT_ADDRESS
        assert settings.price_wei == 100
        assert settings.challenge_ttl == 300
        assert settings.chain_id == BASE_SEPOLIA_CHAIN_ID
        assert settings.ledger_path is None

    def test_overrides(self):
        settings = ServerSettings.from_env(
            {"X402_PRICE_WEI": "250", "X402_CHALLENGE_TTL": "60", "X402_LEDGER_PATH": "/tmp/x402.sqlite3"}
        )
        assert settings.price_wei == 250
        assert settings.challenge_ttl == 60
        assert settings.ledger_path == Path("/tmp/x402.sqlite3")

    @pytest.mark.parametrize("env", [{"X402_PRICE_WEI": "-1"}, {"X402_CHALLENGE_TTL": "0"}, {"X402_PRICE_WEI": "lots"}])
    def test_invalid(self, env):
        with pytest.raises(ConfigError):
            ServerSettings.from_env(env)
