"""Tests for the x402 header codec and usage summaries."""

import base64
import json

import pytest

from mandate_agent.errors import ProtocolError
from mandate_agent.x402_types import (
    DataUsageLog,
    PaymentChallenge,
    decode_challenge_header,
    decode_proof_header,
    encode_challenge_header,
    summarize_usage,
)


def _header(payload) -> str:
    return "x402 " + base64.b64encode(json.dumps(payload).encode()).decode()


class TestChallengeHeader:
    def test_decodes_wire_format(self):
        header = _header(
            {
                "paymentAddress": "0xpay",
                "amount": "100",
                "token": "0x0",
                "nonce": "nonce-1",
                "expiresAt": 1_700_000_300,
                "minimumChainId": 84532,
            }
        )
        challenge = decode_challenge_header(header)
        assert challenge.amount == 100
        assert challenge.nonce == "nonce-1"
        assert challenge.minimum_chain_id == 84532

    def test_encoded_amount_is_string(self):
        challenge = PaymentChallenge("0xpay", 10**21, "0x0", "n", 5)
        payload = json.loads(base64.b64decode(encode_challenge_header(challenge).split(" ", 1)[1]))
        assert payload["amount"] == "1000000000000000000000"
        assert "minimumChainId" not in payload

    @pytest.mark.parametrize(
        "header",
        [
            None,
            "",
            "Bearer abc",
            "x402",
            "x402 not-base64!!",
            "x402 " + base64.b64encode(b"[1, 2]").decode(),
            _header({"paymentAddress": "0xpay", "amount": "100", "expiresAt": 1}),
            _header({"paymentAddress": "0xpay", "amount": "-5", "nonce": "n", "expiresAt": 1}),
        ],
    )
    def test_malformed_headers_raise_protocol_error(self, header):
        with pytest.raises(ProtocolError):
            decode_challenge_header(header)

    def test_expiry(self):
        challenge = PaymentChallenge("0xpay", 1, "0x0", "n", expires_at=100)
        assert not challenge.is_expired(100)
        assert challenge.is_expired(101)


class TestProofHeader:
    def test_decodes_json_proof(self):
        header = 'x402 {"amount":"100","paymentAddress":"0xpay","transactionHash":"0xmock",' \
                 '"blockNumber":0,"agentId":7,"nonce":"nonce-1","timestamp":1700000000}'
        proof = decode_proof_header(header)
        assert proof.amount == 100
        assert proof.agent_id == 7

    def test_rejects_garbage(self):
        with pytest.raises(ProtocolError):
            decode_proof_header("x402 {not json")
        with pytest.raises(ProtocolError):
            decode_proof_header('x402 {"amount": "1"}')


def test_summary_counts_attempts_and_sums_successful_cost():
    logs = [
        DataUsageLog(1, "/a", 100, 0, True),
        DataUsageLog(1, "/a", 100, 0, False, "Payment rejected"),
        DataUsageLog(1, "/b", 250, 0, True),
        DataUsageLog(2, "/a", 0, 0, False, "timeout"),
    ]
    summary = summarize_usage(logs)
    assert summary["agent-1"].count == 3
    assert summary["agent-1"].total_cost == 350
    assert summary["agent-2"].to_wire() == {"count": 1, "totalCost": "0"}
