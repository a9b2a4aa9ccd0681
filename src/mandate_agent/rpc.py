"""
Minimal Ethereum JSON-RPC transport over httpx.

Contract reads use `eth_call` with locally ABI-encoded call data; writes are
pre-signed raw transactions. Every request has a bounded timeout and every
failure surfaces as a NetworkError subclass so callers can treat it as soft.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Optional, Sequence

import httpx
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import keccak

from .errors import NetworkError, RpcError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256(signature)."""
    return keccak(text=signature)[:4]


def encode_function_call(signature: str, arg_types: Sequence[str], args: Sequence[Any]) -> str:
    """Encode a contract call as 0x-prefixed hex call data."""
    selector = function_selector(signature)
    encoded_args = abi_encode(list(arg_types), list(args))
    return "0x" + (selector + encoded_args).hex()


def decode_function_result(result_types: Sequence[str], data: str) -> tuple:
    raw = _hex_to_bytes(data)
    if not raw:
        raise ValueError("Empty call result (contract missing or call reverted)")
    return abi_decode(list(result_types), raw)


class JsonRpcClient:
    """Synchronous JSON-RPC client for an EVM node."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http: Optional[httpx.Client] = None,
    ):
        self.url = url
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=timeout_seconds)
        self._ids = itertools.count(1)

    def call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = self._http.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise NetworkError(f"RPC {method} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"RPC {method} transport error: {e}") from e

        if response.status_code != 200:
            raise RpcError(method, f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise RpcError(method, "response is not JSON") from e

        if not isinstance(body, dict):
            raise RpcError(method, "response is not a JSON object")
        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(method, str(error.get("message", error)), code=error.get("code"))
            raise RpcError(method, str(error))
        if "result" not in body:
            raise RpcError(method, "response has no result")
        return body["result"]

    def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        return self.call("eth_call", [{"to": to, "data": data}, block])

    def call_function(
        self,
        to: str,
        signature: str,
        arg_types: Sequence[str],
        args: Sequence[Any],
        result_types: Sequence[str],
    ) -> tuple:
        """Encode, eth_call and decode in one step."""
        data = encode_function_call(signature, arg_types, args)
        result = self.eth_call(to, data)
        try:
            return decode_function_result(result_types, result)
        except Exception as e:
            raise RpcError("eth_call", f"cannot decode {signature} result: {e}") from e

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return hex_to_int(self.call("eth_getTransactionCount", [address, block]))

    def gas_price(self) -> int:
        return hex_to_int(self.call("eth_gasPrice", []))

    def estimate_gas(self, tx: dict[str, Any]) -> int:
        return hex_to_int(self.call("eth_estimateGas", [tx]))

    def send_raw_transaction(self, raw_tx: str) -> str:
        return str(self.call("eth_sendRawTransaction", [raw_tx]))

    def get_transaction_receipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        return self.call("eth_getTransactionReceipt", [tx_hash])

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _hex_to_bytes(value: str) -> bytes:
    text = value[2:] if value.lower().startswith("0x") else value
    return bytes.fromhex(text)


def hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(str(value), 16)
