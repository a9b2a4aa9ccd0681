"""Shared fakes: an in-process JSON-RPC node and ABI result helpers."""

import json

import httpx
import pytest
from eth_abi import encode as abi_encode

from mandate_agent.rpc import JsonRpcClient, function_selector
from mandate_agent.mandate_store import GET_MANDATE_RESULT, GET_MANDATE_SIGNATURE
from mandate_agent.market_client import GET_MARKET_RESULT, GET_MARKET_SIGNATURE


POLICY = "0x" + "22" * 20
MARKET_CONTRACT = "0x" + "33" * 20
SMART_ACCOUNT = "0x" + "44" * 20
RESOLVER = "0x" + "55" * 20
AGENT_KEY = "0x" + "11" * 32


def selector_hex(signature: str) -> str:
    return "0x" + function_selector(signature).hex()


def encode_mandate(agent, max_trade_size, allowed_markets=(MARKET_CONTRACT,), expiry_time=2_000_000_000, is_active=True, created_at=1):
    return "0x" + abi_encode(
        GET_MANDATE_RESULT,
        [(agent, max_trade_size, list(allowed_markets), expiry_time, is_active, created_at)],
    ).hex()


def encode_market(market_id=1, yes=1000, no=500, status=0, outcome=0, question="Will it rain?", resolution_time=2_000_000_000):
    return "0x" + abi_encode(
        GET_MARKET_RESULT,
        [(market_id, question, 1_700_000_000, resolution_time, status, outcome, yes, no, RESOLVER)],
    ).hex()


class FakeChain:
    """Answers JSON-RPC requests from canned results keyed by method or selector."""

    def __init__(self):
        self.requests = []
        self.call_results = {}
        self.results = {
            "eth_getTransactionCount": "0x7",
            "eth_gasPrice": "0x3b9aca00",
            "eth_estimateGas": "0x186a0",
            "eth_sendRawTransaction": "0x" + "ab" * 32,
            "eth_getTransactionReceipt": {"status": "0x1", "blockNumber": "0x10"},
        }
        self.errors = {}

    def set_call(self, signature, result):
        self.call_results[selector_hex(signature)] = result

    def set_mandate(self, *args, **kwargs):
        self.set_call(GET_MANDATE_SIGNATURE, encode_mandate(*args, **kwargs))

    def set_market(self, **kwargs):
        self.set_call(GET_MARKET_SIGNATURE, encode_market(**kwargs))

    def methods(self):
        return [r["method"] for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        method = body["method"]
        if method in self.errors:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": self.errors[method]}},
            )
        if method == "eth_call":
            data = body["params"][0]["data"]
            result = self.call_results.get(data[:10])
            if result is None:
                return httpx.Response(
                    200,
                    json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": 3, "message": "execution reverted"}},
                )
        else:
            result = self.results.get(method)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def rpc(chain):
    client = JsonRpcClient("http://rpc.test", http=httpx.Client(transport=httpx.MockTransport(chain.handler)))
    yield client
    client.close()
