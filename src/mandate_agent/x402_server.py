"""
Gated-data (x402) server.

Every protected route answers an unauthenticated request with a fresh
402 challenge, and a request carrying a proof with either the payload
(plus `x402-cost`) or a 403. Each proof attempt lands in the usage ledger.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable, Optional, Protocol

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .config import ServerSettings
from .errors import PaymentError, PaymentMethodNotImplementedError, ProtocolError
from .ledger import ChallengeStore, UsageLedger, open_ledgers
from .units import format_amount
from .x402_types import (
    CHALLENGE_HEADER,
    COST_HEADER,
    PROOF_HEADER,
    DataUsageLog,
    PaymentChallenge,
    PaymentProof,
    decode_proof_header,
    encode_challenge_header,
)

logger = logging.getLogger(__name__)

MarketDataSource = Callable[[int, int], dict[str, Any]]
SignalSource = Callable[[int], list[dict[str, Any]]]


class PaymentProvider(Protocol):
    def verify_payment(self, proof: PaymentProof) -> bool: ...


class MockPaymentProvider:
    """Accepts every well-formed proof (development)."""

    def verify_payment(self, proof: PaymentProof) -> bool:
        logger.debug(
            "Verifying mock payment: agent=%s amount=%s tx=%s",
            proof.agent_id,
            format_amount(proof.amount),
            proof.transaction_hash,
        )
        return True


class BlockchainPaymentProvider:
    """On-chain settlement check. Not available; proofs are rejected."""

    def __init__(self, rpc_url: Optional[str] = None):
        self.rpc_url = rpc_url

    def verify_payment(self, proof: PaymentProof) -> bool:
        raise PaymentMethodNotImplementedError("Blockchain payment verification not implemented")


def static_market_data(market_id: int, now: int) -> dict[str, Any]:
    return {
        "marketId": market_id,
        "yesLiquidity": "1000000000000000000000",
        "noLiquidity": "500000000000000000000",
        "yesProbability": 67,
        "estimatedYesPrice": 0.67,
        "timestamp": now,
    }


def static_signals(now: int) -> list[dict[str, Any]]:
    return [
        {"marketId": 1, "direction": "YES", "confidence": 0.85, "model": "v1.2", "timestamp": now},
        {"marketId": 2, "direction": "NO", "confidence": 0.72, "model": "v1.2", "timestamp": now},
    ]


class GatedDataServer:
    """Challenge issuance, proof settlement and usage accounting."""

    def __init__(
        self,
        settings: Optional[ServerSettings] = None,
        provider: Optional[PaymentProvider] = None,
        challenges: Optional[ChallengeStore] = None,
        ledger: Optional[UsageLedger] = None,
        market_data: MarketDataSource = static_market_data,
        signals: SignalSource = static_signals,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or ServerSettings()
        self.provider = provider or MockPaymentProvider()
        if challenges is None or ledger is None:
            default_challenges, default_ledger = open_ledgers(self.settings.ledger_path)
            challenges = challenges if challenges is not None else default_challenges
            ledger = ledger if ledger is not None else default_ledger
        self.challenges = challenges
        self.ledger = ledger
        self.market_data = market_data
        self.signals = signals
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def issue_challenge(self, endpoint: str) -> PaymentChallenge:
        now = self.now()
        self.challenges.evict_expired(now)
        challenge = PaymentChallenge(
            payment_address=self.settings.payment_address,
            amount=self.settings.price_wei,
            token=self.settings.token,
            nonce=_generate_nonce(),
            expires_at=now + self.settings.challenge_ttl,
            minimum_chain_id=self.settings.chain_id,
        )
        self.challenges.put(challenge)
        logger.info(
            "Sent 402 challenge: endpoint=%s nonce=%s amount=%s",
            endpoint,
            challenge.nonce,
            format_amount(challenge.amount),
        )
        return challenge

    def settle(self, endpoint: str, header: str) -> PaymentProof:
        """Validate a proof header and burn its challenge.

        Raises PaymentError (with the rejection reason) on any failure; a
        usage entry is recorded either way.
        """
        now = self.now()
        try:
            proof = decode_proof_header(header)
        except ProtocolError as e:
            self._record(0, endpoint, 0, now, success=False, error_message=str(e))
            raise

        try:
            self.challenges.consume(proof.nonce, proof.amount, now)
            if not self.provider.verify_payment(proof):
                raise PaymentError("Payment verification failed")
        except PaymentError as e:
            self._record(proof.agent_id, endpoint, proof.amount, now, success=False, error_message=str(e))
            raise
        except Exception as e:
            logger.exception("Payment provider failed: agent=%s nonce=%s", proof.agent_id, proof.nonce)
            message = f"Payment verification error: {e}"
            self._record(proof.agent_id, endpoint, proof.amount, now, success=False, error_message=message)
            raise PaymentError(message) from e
        finally:
            self.challenges.evict_expired(now)

        self._record(proof.agent_id, endpoint, proof.amount, now, success=True)
        return proof

    def _record(
        self,
        agent_id: int,
        endpoint: str,
        amount: int,
        now: int,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        self.ledger.append(
            DataUsageLog(
                agent_id=agent_id,
                endpoint=endpoint,
                amount_paid=amount,
                timestamp=now,
                success=success,
                error_message=error_message,
            )
        )
        logger.info("Data access logged: agent=%s endpoint=%s success=%s", agent_id, endpoint, success)

    def logs_payload(self, agent_id: Optional[int] = None) -> dict[str, Any]:
        return {
            "logs": [entry.to_wire() for entry in self.ledger.entries(agent_id)],
            "summary": {key: s.to_wire() for key, s in self.ledger.summary().items()},
        }


def create_app(server: Optional[GatedDataServer] = None) -> FastAPI:
    """Build the FastAPI application around a GatedDataServer."""
    gated = server or GatedDataServer()
    app = FastAPI(title="mandate-agent gated data")
    app.state.gated = gated

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug("Incoming request: %s %s", request.method, request.url.path)
        return await call_next(request)

    def respond(request: Request, endpoint: str, payload: Callable[[], Any]) -> JSONResponse:
        header = request.headers.get(PROOF_HEADER)
        if not header:
            challenge = gated.issue_challenge(endpoint)
            return JSONResponse(
                status_code=402,
                content={"error": "Payment Required", "message": "This endpoint requires x402 payment"},
                headers={CHALLENGE_HEADER: encode_challenge_header(challenge)},
            )
        try:
            proof = gated.settle(endpoint, header)
        except PaymentError as e:
            logger.warning("Payment rejected for %s: %s", endpoint, e)
            return JSONResponse(status_code=403, content={"error": str(e)})
        return JSONResponse(content=payload(), headers={COST_HEADER: format_amount(proof.amount)})

    @app.get("/market/{market_id}/data")
    def market_data(market_id: int, request: Request):
        return respond(request, f"/market/{market_id}/data", lambda: gated.market_data(market_id, gated.now()))

    @app.post("/signals/premium")
    def premium_signals(request: Request):
        return respond(request, "/signals/premium", lambda: gated.signals(gated.now()))

    @app.get("/admin/logs")
    def admin_logs(agent_id: Optional[int] = Query(default=None, alias="agentId")):
        return gated.logs_payload(agent_id)

    @app.get("/health")
    def health():
        return {"status": "ok", "pendingChallenges": gated.challenges.pending_count()}

    return app


def _generate_nonce() -> str:
    return "nonce-" + secrets.token_hex(16)
