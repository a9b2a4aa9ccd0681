"""
Trade executor.

Wraps the builder's call in the smart account's `execute(target, value,
data)`, signs a legacy transaction with the agent key and submits it over
JSON-RPC. Failures never propagate: they come back as ExecutionResult.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from eth_account import Account
from eth_utils import to_checksum_address

from .errors import AgentError, ExecutionError
from .market import TradeDirection
from .rpc import JsonRpcClient, hex_to_int, encode_function_call
from .tx_builder import TradeBuilder, TradeTransaction
from .units import format_ether

logger = logging.getLogger(__name__)


EXECUTE_SIGNATURE = "execute(address,uint256,bytes)"
EXECUTE_ARG_TYPES = ["address", "uint256", "bytes"]
GAS_BUFFER_PERCENT = 120
DEFAULT_RECEIPT_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 2.0


@dataclass
class ExecutionResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    block_number: Optional[int] = None
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "block_number": self.block_number,
            "dry_run": self.dry_run,
        }


def encode_execute_call(tx: TradeTransaction) -> str:
    """Smart-account `execute` call data wrapping `tx`."""
    inner = bytes.fromhex(tx.data[2:] if tx.data.startswith("0x") else tx.data)
    return encode_function_call(
        EXECUTE_SIGNATURE,
        EXECUTE_ARG_TYPES,
        [to_checksum_address(tx.to), int(tx.value), inner],
    )


class TradeExecutor:
    def __init__(
        self,
        rpc: JsonRpcClient,
        builder: TradeBuilder,
        private_key: str,
        smart_account_address: str,
        chain_id: int,
        dry_run: bool = False,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rpc = rpc
        self.builder = builder
        self._account = Account.from_key(private_key)
        self.smart_account_address = to_checksum_address(smart_account_address)
        self.chain_id = chain_id
        self.dry_run = dry_run
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    @property
    def agent_address(self) -> str:
        return self._account.address

    def execute_trade(self, market_id: int, agent_id: int, size: int, direction: TradeDirection) -> ExecutionResult:
        logger.info(
            "Starting trade execution: market=%s agent=%s size=%s direction=%s",
            market_id,
            agent_id,
            format_ether(size),
            TradeDirection(direction).name,
        )
        tx_hash: Optional[str] = None
        try:
            trade = self.builder.build_trade_transaction(market_id, agent_id, size, direction)
            raw_tx, tx_hash = self._sign(encode_execute_call(trade))

            if self.dry_run:
                logger.info("Dry run: signed %s, not broadcasting", tx_hash)
                return ExecutionResult(success=True, tx_hash=tx_hash, dry_run=True)

            submitted = self.rpc.send_raw_transaction(raw_tx)
            tx_hash = submitted or tx_hash
            logger.info("Trade submitted: %s", tx_hash)
            block_number = self._wait_for_receipt(tx_hash)
        except (AgentError, ValueError) as e:
            logger.error("Trade execution failed: %s", e)
            return ExecutionResult(success=False, tx_hash=tx_hash, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error during trade execution")
            return ExecutionResult(success=False, tx_hash=tx_hash, error=str(e) or type(e).__name__)

        logger.info("Trade executed successfully: %s (block %s)", tx_hash, block_number)
        return ExecutionResult(success=True, tx_hash=tx_hash, block_number=block_number)

    def _sign(self, data: str) -> tuple[str, str]:
        sender = self._account.address
        call = {"from": sender, "to": self.smart_account_address, "data": data, "value": "0x0"}
        gas = self.rpc.estimate_gas(call) * GAS_BUFFER_PERCENT // 100
        tx = {
            "to": self.smart_account_address,
            "value": 0,
            "data": data,
            "nonce": self.rpc.get_transaction_count(sender),
            "gas": gas,
            "gasPrice": self.rpc.gas_price(),
            "chainId": self.chain_id,
        }
        logger.debug("Signing transaction: nonce=%s gas=%s", tx["nonce"], gas)
        signed = self._account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex(), "0x" + bytes(signed.hash).hex()

    def _wait_for_receipt(self, tx_hash: str) -> int:
        deadline = self._clock() + self.receipt_timeout
        while True:
            receipt = self.rpc.get_transaction_receipt(tx_hash)
            if receipt:
                if hex_to_int(receipt.get("status", "0x0")) == 0:
                    raise ExecutionError(f"Transaction {tx_hash} reverted")
                return hex_to_int(receipt.get("blockNumber", "0x0"))
            if self._clock() >= deadline:
                raise ExecutionError(f"Timed out waiting for receipt of {tx_hash}")
            self._sleep(self.poll_interval)
