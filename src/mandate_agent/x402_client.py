"""
Gated-data (x402) client.

Runs the challenge/proof exchange against a data provider: one unpaid
request, one paid retry, never more. Every call to `fetch_data` appends
exactly one usage log entry, whether it succeeded or not.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urljoin

import httpx

from .errors import (
    AgentError,
    InsufficientBalanceError,
    NetworkError,
    PaymentMethodNotImplementedError,
    PaymentRejectedError,
    PaymentTimeoutError,
    ProtocolError,
)
from .units import format_amount, parse_amount
from .x402_types import (
    CHALLENGE_HEADER,
    COST_HEADER,
    PROOF_HEADER,
    DataResponse,
    DataUsageLog,
    PaymentChallenge,
    PaymentConfig,
    PaymentMethod,
    PaymentProof,
    RequestState,
    ResponseMetadata,
    UsageSummary,
    decode_challenge_header,
    encode_proof_header,
    summarize_usage,
)

logger = logging.getLogger(__name__)

MOCK_TRANSACTION_HASH = "0x" + "mock" * 16


@dataclass
class _Attempt:
    request_id: str
    endpoint: str
    state: RequestState = RequestState.INIT
    amount: int = 0


class GatedDataClient:
    """Fetches premium data, paying per request via the configured method."""

    def __init__(
        self,
        base_url: str,
        config: Optional[PaymentConfig] = None,
        http: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.config = config or PaymentConfig()
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=self.config.timeout_seconds)
        self._clock = clock
        self._mock_balance = self.config.mock_balance
        self._proof_cache: dict[str, PaymentProof] = {}
        self._usage_logs: list[DataUsageLog] = []
        self._proof_handlers: dict[PaymentMethod, Callable[[PaymentChallenge], PaymentProof]] = {
            PaymentMethod.MOCK: self._create_mock_proof,
            PaymentMethod.BLOCKCHAIN: self._create_blockchain_proof,
            PaymentMethod.CACHED: self._create_cached_proof,
        }

    @property
    def mock_balance(self) -> Optional[int]:
        return self._mock_balance

    def fetch_data(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> DataResponse[Any]:
        """Fetch a gated endpoint, handling a single payment challenge."""
        attempt = _Attempt(request_id=_generate_request_id(), endpoint=endpoint)
        logger.info("Fetching gated data: %s (request %s)", endpoint, attempt.request_id)

        try:
            response = self._exchange(attempt, params)
            result = self._to_data_response(response, attempt)
        except AgentError as e:
            attempt.state = RequestState.REJECTED
            self._record(attempt, success=False, error_message=str(e))
            raise

        self._record(attempt, success=True)
        return result

    def create_payment_proof(self, challenge: PaymentChallenge) -> PaymentProof:
        handler = self._proof_handlers.get(self.config.method)
        if handler is None:
            raise PaymentMethodNotImplementedError(f"Unknown payment method: {self.config.method}")
        return handler(challenge)

    def _exchange(self, attempt: _Attempt, params: Optional[dict[str, Any]]) -> httpx.Response:
        url = urljoin(self.base_url, attempt.endpoint.lstrip("/"))
        headers = {"Content-Type": "application/json", **self.config.extra_headers}

        response = self._send(url, params, headers)
        if response.status_code != 402:
            if response.is_success:
                return response
            raise ProtocolError(
                f"Unexpected status {response.status_code} before payment: {response.text[:200]}"
            )

        attempt.state = RequestState.CHALLENGED
        challenge = decode_challenge_header(response.headers.get(CHALLENGE_HEADER))
        logger.info(
            "Payment required for %s: %s (nonce %s)",
            attempt.endpoint,
            format_amount(challenge.amount),
            challenge.nonce,
        )

        proof = self.create_payment_proof(challenge)
        reused = self._proof_cache.get(proof.nonce) is proof
        attempt.amount = challenge.amount

        paid_headers = {**headers, PROOF_HEADER: encode_proof_header(proof)}
        paid_response = self._send(url, params, paid_headers)
        if not paid_response.is_success:
            raise PaymentRejectedError(paid_response.status_code, _error_detail(paid_response))

        if not reused:
            self._debit(proof.amount)
            self._cache_proof(proof)
        attempt.state = RequestState.SETTLED
        return paid_response

    def _send(self, url: str, params: Optional[dict[str, Any]], headers: dict[str, str]) -> httpx.Response:
        query = {k: str(v) for k, v in (params or {}).items()}
        try:
            return self._http.get(url, params=query, headers=headers)
        except httpx.TimeoutException as e:
            raise PaymentTimeoutError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Connection failed: {e}") from e

    def _to_data_response(self, response: httpx.Response, attempt: _Attempt) -> DataResponse[Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(f"Gated data response is not JSON: {e}") from e

        raw_cost = response.headers.get(COST_HEADER)
        try:
            cost = parse_amount(raw_cost, COST_HEADER) if raw_cost is not None else 0
        except ValueError as e:
            raise ProtocolError(str(e)) from e

        return DataResponse(
            data=data,
            cost=cost,
            metadata=ResponseMetadata(
                timestamp=self._now(),
                agent_id=self.config.agent_id,
                request_id=attempt.request_id,
            ),
        )

    def _create_mock_proof(self, challenge: PaymentChallenge) -> PaymentProof:
        logger.warning("Using MOCK payment (development only): %s", format_amount(challenge.amount))
        if self._mock_balance is not None:
            if self._mock_balance < challenge.amount:
                raise InsufficientBalanceError(challenge.amount, self._mock_balance)

        return PaymentProof(
            amount=challenge.amount,
            payment_address=challenge.payment_address,
            transaction_hash=MOCK_TRANSACTION_HASH,
            block_number=0,
            agent_id=self.config.agent_id,
            nonce=challenge.nonce,
            timestamp=self._now(),
        )

    def _create_blockchain_proof(self, challenge: PaymentChallenge) -> PaymentProof:
        logger.warning("Blockchain payment requested for nonce %s but is not available", challenge.nonce)
        raise PaymentMethodNotImplementedError("Blockchain payment method not implemented")

    def _create_cached_proof(self, challenge: PaymentChallenge) -> PaymentProof:
        cached = self._proof_cache.get(challenge.nonce)
        if cached is None or cached.timestamp + self.config.proof_cache_ttl < self._now():
            return self._create_mock_proof(challenge)
        logger.debug("Using cached payment proof for nonce %s", challenge.nonce)
        return cached

    def _debit(self, amount: int) -> None:
        if self._mock_balance is not None:
            self._mock_balance -= amount

    def _cache_proof(self, proof: PaymentProof) -> None:
        cutoff = self._now() - self.config.proof_cache_ttl
        self._proof_cache = {n: p for n, p in self._proof_cache.items() if p.timestamp >= cutoff}
        self._proof_cache[proof.nonce] = proof

    def _record(self, attempt: _Attempt, success: bool, error_message: Optional[str] = None) -> None:
        self._usage_logs.append(
            DataUsageLog(
                agent_id=self.config.agent_id,
                endpoint=attempt.endpoint,
                amount_paid=attempt.amount,
                timestamp=self._now(),
                success=success,
                error_message=error_message,
            )
        )

    def get_usage_logs(self) -> list[DataUsageLog]:
        return list(self._usage_logs)

    def get_usage_summary(self) -> dict[str, UsageSummary]:
        return summarize_usage(self._usage_logs)

    def clear_logs(self) -> None:
        self._usage_logs = []

    def _now(self) -> int:
        return int(self._clock())

    def close(self):
        if self._owns_http:
            self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _generate_request_id() -> str:
    return f"req-{secrets.token_hex(5)}"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return response.text[:200]
