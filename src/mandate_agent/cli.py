"""
mandate-agent CLI.

Commands:
    mandate-agent run      Run the trading loop (or a single cycle)
    mandate-agent serve    Run the gated-data (x402) server
    mandate-agent mandate  Show the current on-chain mandate
    mandate-agent market   Show market state and probability estimate
    mandate-agent usage    Fetch gated-data usage from a server
    mandate-agent audit    View the decision audit trail
"""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import click
import httpx
import uvicorn
from eth_account import Account

from . import __version__
from .agent import Agent
from .audit import AuditChainError, AuditTrail
from .config import AgentConfig, ServerSettings
from .errors import AgentError, ConfigError
from .mandate_store import MandateStoreClient
from .market import estimate_yes_probability
from .market_client import MarketStateClient
from .rpc import JsonRpcClient
from .units import format_ether
from .x402_client import GatedDataClient
from .x402_server import GatedDataServer, create_app
from .x402_types import DataUsageLog, PaymentConfig


def _load_config() -> AgentConfig:
    try:
        config = AgentConfig.from_env()
        config.validate()
    except ConfigError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)
    return config


def _fmt_time(ts: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ts))


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity (default: INFO)",
)
def main(log_level: str):
    """mandate-agent: mandate-constrained prediction market trading agent."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--once", is_flag=True, help="Run a single decision cycle and exit")
@click.option("--dry-run", is_flag=True, help="Sign trades but do not broadcast them")
def run(once: bool, dry_run: bool):
    """Run the agent loop using environment configuration."""
    config = _load_config()
    if dry_run:
        config.dry_run = True

    try:
        agent = Agent.from_config(config, audit=AuditTrail())
        agent.initialize()
    except AgentError as e:
        click.echo(f"❌ Failed to start agent: {e}", err=True)
        sys.exit(1)

    if once:
        outcome = agent.run_once()
        click.echo(f"Cycle: {outcome.status.value}")
        if outcome.reason:
            click.echo(f"   Reason:     {outcome.reason}")
        if outcome.signal:
            click.echo(f"   Signal:     {outcome.signal.direction.name} on market {outcome.signal.market_id}")
            click.echo(f"   Confidence: {outcome.signal.confidence}%")
        if outcome.size is not None:
            click.echo(f"   Size:       {format_ether(outcome.size)}")
        if outcome.result:
            status = "✅" if outcome.result.success else "❌"
            detail = outcome.result.tx_hash if outcome.result.success else outcome.result.error
            click.echo(f"   Execution:  {status} {detail}")
        click.echo(f"   Next check: {_fmt_time(outcome.next_check_time)}")
        if outcome.result and not outcome.result.success:
            sys.exit(1)
        return

    click.echo(f"🤖 Agent {config.agent_id} running (Ctrl+C to stop)")
    try:
        agent.run()
    except KeyboardInterrupt:
        agent.stop()
        click.echo("Stopped.")


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=3000, help="Bind port (default: 3000)")
@click.option("--ledger-path", type=click.Path(dir_okay=False), default=None,
              help="SQLite ledger file (default: X402_LEDGER_PATH or in-memory)")
def serve(host: str, port: int, ledger_path: Optional[str]):
    """Run the gated-data server."""
    try:
        settings = ServerSettings.from_env()
    except ConfigError as e:
        click.echo(f"❌ Invalid server configuration: {e}", err=True)
        sys.exit(1)
    if ledger_path:
        settings.ledger_path = Path(ledger_path)

    app = create_app(GatedDataServer(settings))
    click.echo(f"🔐 x402 server on http://{host}:{port} (price {settings.price_wei} wei)")
    uvicorn.run(app, host=host, port=port)


@main.command()
def mandate():
    """Show the mandate the smart account granted to this agent."""
    config = _load_config()
    agent_address = Account.from_key(config.agent_private_key).address

    with JsonRpcClient(config.rpc_url, timeout_seconds=config.http_timeout_seconds) as rpc:
        store = MandateStoreClient(config.delegation_policy_address, rpc)
        current = store.get_mandate(config.smart_account_address, agent_address)
        ok, reason = store.check_authorization(current, config.prediction_market_address)
        registered = store.is_authorized(config.smart_account_address, agent_address)

    if current is None:
        click.echo(f"❌ No mandate found for agent {agent_address}", err=True)
        sys.exit(1)

    click.echo(f"📜 Mandate for {agent_address}")
    click.echo(f"   Account:   {config.smart_account_address}")
    click.echo(f"   Active:    {current.is_active}")
    click.echo(f"   Max trade: {format_ether(current.max_trade_size)}")
    click.echo(f"   Markets:   {', '.join(current.allowed_markets) or 'none'}")
    click.echo(f"   Expires:   {_fmt_time(current.expiry_time)}")
    click.echo(f"   Status:    {'✅' if ok else '❌'} {reason}")
    click.echo(f"   Registry:  {'authorized' if registered else 'not authorized'}")


@main.command()
@click.argument("market_id", type=int)
@click.option("--premium", is_flag=True, help="Fetch the premium probability via x402")
def market(market_id: int, premium: bool):
    """Show market state and the YES probability estimate."""
    config = _load_config()

    gated = None
    if premium:
        gated = GatedDataClient(
            config.x402_base_url,
            PaymentConfig(
                method=config.payment_method,
                agent_id=config.agent_id,
                mock_balance=config.mock_balance,
                timeout_seconds=config.http_timeout_seconds,
            ),
        )
    with JsonRpcClient(config.rpc_url, timeout_seconds=config.http_timeout_seconds) as rpc:
        client = MarketStateClient(config.prediction_market_address, rpc, gated)
        state = client.get_market(market_id, include_premium_signal=premium)
        usage = client.get_usage_summary()
    if gated is not None:
        gated.close()

    if state is None:
        click.echo(f"❌ Could not read market {market_id}", err=True)
        sys.exit(1)

    click.echo(f"📈 Market {state.market_id}: {state.question}")
    click.echo(f"   Status:      {state.status.value}")
    click.echo(f"   YES pool:    {format_ether(state.yes_liquidity)}")
    click.echo(f"   NO pool:     {format_ether(state.no_liquidity)}")
    click.echo(f"   Resolves:    {_fmt_time(state.resolution_time)}")
    source = "premium" if state.premium_yes_probability is not None else "local"
    click.echo(f"   YES prob:    {estimate_yes_probability(state)}% ({source})")
    for key, summary in usage.items():
        click.echo(f"   Data spend:  {key} {summary.count} requests, {summary.total_cost} wei")


@main.command()
@click.option("--base-url", envvar="X402_BASE_URL", default="http://localhost:3000",
              help="Gated-data server URL")
@click.option("--agent-id", type=int, default=None, help="Filter by agent ID")
def usage(base_url: str, agent_id: Optional[int]):
    """Show gated-data usage recorded by the server."""
    params = {"agentId": agent_id} if agent_id is not None else {}
    try:
        response = httpx.get(f"{base_url.rstrip('/')}/admin/logs", params=params, timeout=5.0)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        click.echo(f"❌ Failed to fetch usage logs: {e}", err=True)
        sys.exit(1)

    try:
        logs = [DataUsageLog.from_wire(raw) for raw in payload.get("logs", [])]
    except (KeyError, TypeError, ValueError) as e:
        click.echo(f"❌ Unexpected usage log format: {e}", err=True)
        sys.exit(1)

    if not logs:
        click.echo("No usage recorded.")
    for entry in logs:
        status = "✅" if entry.success else "❌"
        error = f" ({entry.error_message})" if entry.error_message else ""
        click.echo(f"  {status} agent {entry.agent_id} {entry.endpoint} {entry.amount_paid} wei{error}")
    click.echo("Summary:")
    click.echo(json.dumps(payload.get("summary", {}), indent=2))


@main.command()
@click.option("--limit", type=int, default=20, help="Number of events")
def audit(limit: int):
    """View the decision audit trail."""
    trail = AuditTrail()
    try:
        events = trail.read_events(limit=limit)
    except AuditChainError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not events:
        click.echo("No audit events found.")
        return

    for event in events:
        ts = time.strftime("%H:%M:%S", time.localtime(event.timestamp))
        status = "✅" if event.success else "❌"
        market_part = f" market {event.market_id}" if event.market_id is not None else ""
        direction = f" {event.direction}" if event.direction else ""
        amount = f" {format_ether(int(event.amount))}" if event.amount else ""
        reason = f" ({event.reason})" if event.reason else ""
        click.echo(f"  {ts} {status} {event.event_type}{market_part}{direction}{amount}{reason}")


if __name__ == "__main__":
    main()
