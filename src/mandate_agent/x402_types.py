"""
Gated-data (x402) protocol types and header codec.

Wire format:
    402  WWW-Authenticate: x402 <base64(json(challenge))>
    retry  Authorization: x402 <json(proof)>
    200  x402-cost: <decimal string>

Amounts are integers in the smallest unit and travel as decimal strings.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Iterable, Mapping, Optional, TypeVar

from .errors import ProtocolError
from .units import format_amount, parse_amount


SCHEME = "x402"
CHALLENGE_HEADER = "WWW-Authenticate"
PROOF_HEADER = "Authorization"
COST_HEADER = "x402-cost"

T = TypeVar("T")


class PaymentMethod(str, Enum):
    MOCK = "mock"
    BLOCKCHAIN = "blockchain"
    CACHED = "cached"


class RequestState(str, Enum):
    INIT = "init"
    CHALLENGED = "challenged"
    SETTLED = "settled"
    REJECTED = "rejected"


@dataclass
class PaymentChallenge:
    """Server-issued, single-use pricing request."""

    payment_address: str
    amount: int
    token: str
    nonce: str
    expires_at: int
    minimum_chain_id: Optional[int] = None

    def is_expired(self, now: Optional[int] = None) -> bool:
        current = int(time.time()) if now is None else now
        return self.expires_at < current

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "paymentAddress": self.payment_address,
            "amount": format_amount(self.amount),
            "token": self.token,
            "nonce": self.nonce,
            "expiresAt": self.expires_at,
        }
        if self.minimum_chain_id is not None:
            payload["minimumChainId"] = self.minimum_chain_id
        return payload

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> "PaymentChallenge":
        try:
            minimum_chain_id = payload.get("minimumChainId")
            return cls(
                payment_address=str(payload["paymentAddress"]),
                amount=parse_amount(payload["amount"]),
                token=str(payload.get("token") or "0x0"),
                nonce=_require_str(payload["nonce"], "nonce"),
                expires_at=int(payload["expiresAt"]),
                minimum_chain_id=int(minimum_chain_id) if minimum_chain_id is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid x402 challenge payload: {e}") from e


@dataclass
class PaymentProof:
    """Client-constructed evidence that a challenge was paid."""

    amount: int
    payment_address: str
    transaction_hash: str
    block_number: int
    agent_id: int
    nonce: str
    timestamp: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "amount": format_amount(self.amount),
            "paymentAddress": self.payment_address,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "agentId": self.agent_id,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> "PaymentProof":
        try:
            return cls(
                amount=parse_amount(payload["amount"]),
                payment_address=str(payload["paymentAddress"]),
                transaction_hash=str(payload["transactionHash"]),
                block_number=int(payload["blockNumber"]),
                agent_id=int(payload["agentId"]),
                nonce=_require_str(payload["nonce"], "nonce"),
                timestamp=int(payload["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid x402 proof payload: {e}") from e


@dataclass
class DataUsageLog:
    """Audit record of one gated-data access attempt. Never mutated."""

    agent_id: int
    endpoint: str
    amount_paid: int
    timestamp: int
    success: bool
    error_message: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "agentId": self.agent_id,
            "endpoint": self.endpoint,
            "amountPaid": format_amount(self.amount_paid),
            "timestamp": self.timestamp,
            "success": self.success,
        }
        if self.error_message is not None:
            payload["errorMessage"] = self.error_message
        return payload

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> "DataUsageLog":
        return cls(
            agent_id=int(payload["agentId"]),
            endpoint=str(payload["endpoint"]),
            amount_paid=parse_amount(payload["amountPaid"], "amountPaid"),
            timestamp=int(payload["timestamp"]),
            success=bool(payload["success"]),
            error_message=payload.get("errorMessage"),
        )


@dataclass
class ResponseMetadata:
    timestamp: int
    agent_id: int
    request_id: str


@dataclass
class DataResponse(Generic[T]):
    data: T
    cost: int
    metadata: ResponseMetadata


@dataclass
class PaymentConfig:
    method: PaymentMethod = PaymentMethod.MOCK
    agent_id: int = 0
    mock_balance: Optional[int] = None
    proof_cache_ttl: int = 3600
    timeout_seconds: float = 5.0
    extra_headers: dict[str, str] = field(default_factory=dict)


@dataclass
class UsageSummary:
    count: int = 0
    total_cost: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {"count": self.count, "totalCost": format_amount(self.total_cost)}


def usage_key(agent_id: int) -> str:
    return f"agent-{agent_id}"


def summarize_usage(logs: Iterable[DataUsageLog]) -> dict[str, UsageSummary]:
    """Per-agent attempt count and total cost of successful attempts."""
    summary: dict[str, UsageSummary] = {}
    for log in logs:
        entry = summary.setdefault(usage_key(log.agent_id), UsageSummary())
        entry.count += 1
        if log.success:
            entry.total_cost += log.amount_paid
    return summary


def encode_challenge_header(challenge: PaymentChallenge) -> str:
    raw = json.dumps(challenge.to_wire(), separators=(",", ":")).encode()
    return f"{SCHEME} {base64.b64encode(raw).decode('ascii')}"


def decode_challenge_header(header: Optional[str]) -> PaymentChallenge:
    token = _strip_scheme(header, "challenge")
    try:
        decoded = base64.b64decode(token, validate=True)
        payload = json.loads(decoded)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Malformed x402 challenge: {e}") from e
    if not isinstance(payload, dict):
        raise ProtocolError("Malformed x402 challenge: payload is not an object")
    return PaymentChallenge.from_wire(payload)


def encode_proof_header(proof: PaymentProof) -> str:
    return f"{SCHEME} {json.dumps(proof.to_wire(), separators=(',', ':'))}"


def decode_proof_header(header: Optional[str]) -> PaymentProof:
    token = _strip_scheme(header, "proof")
    try:
        payload = json.loads(token)
    except ValueError as e:
        raise ProtocolError(f"Malformed x402 proof: {e}") from e
    if not isinstance(payload, dict):
        raise ProtocolError("Malformed x402 proof: payload is not an object")
    return PaymentProof.from_wire(payload)


def _strip_scheme(header: Optional[str], kind: str) -> str:
    if not header:
        raise ProtocolError(f"Missing x402 {kind} header")
    value = header.strip()
    prefix, _, rest = value.partition(" ")
    if prefix.lower() != SCHEME or not rest.strip():
        raise ProtocolError(f"Invalid x402 {kind} format")
    return rest.strip()


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{field_name} must be a non-empty string")
    return value
