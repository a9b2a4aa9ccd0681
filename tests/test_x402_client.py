"""Tests for the gated-data client's challenge/proof exchange."""

import json

import httpx
import pytest

from mandate_agent.errors import (
    InsufficientBalanceError,
    NetworkError,
    PaymentMethodNotImplementedError,
    PaymentRejectedError,
    PaymentTimeoutError,
    ProtocolError,
)
from mandate_agent.x402_client import MOCK_TRANSACTION_HASH, GatedDataClient
from mandate_agent.x402_types import (
    PaymentChallenge,
    PaymentConfig,
    PaymentMethod,
    decode_proof_header,
    encode_challenge_header,
)


PAY_TO = "0x" + "66" * 20


class FakeProvider:
    """Gated endpoint: 402 without proof, payload with proof."""

    def __init__(self, amount=100, nonce="nonce-fixed", paid_status=200, free=False):
        self.amount = amount
        self.nonce = nonce
        self.paid_status = paid_status
        self.free = free
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.free:
            return httpx.Response(200, json={"free": True})
        if "Authorization" not in request.headers:
            challenge = PaymentChallenge(PAY_TO, self.amount, "0x0", self.nonce, 2_000_000_000, 84532)
            return httpx.Response(
                402,
                headers={"WWW-Authenticate": encode_challenge_header(challenge)},
                json={"error": "Payment Required"},
            )
        if self.paid_status != 200:
            return httpx.Response(self.paid_status, json={"error": "Payment verification failed"})
        return httpx.Response(200, headers={"x402-cost": str(self.amount)}, json={"yesProbability": 67})


def make_client(provider, clock=None, **config):
    config.setdefault("agent_id", 7)
    return GatedDataClient(
        "http://data.test",
        PaymentConfig(**config),
        http=httpx.Client(transport=httpx.MockTransport(provider)),
        clock=clock or (lambda: 1_700_000_000),
    )


class TestFetchData:
    def test_pays_challenge_and_returns_payload(self):
        provider = FakeProvider()
        client = make_client(provider)

        response = client.fetch_data("/market/1/data")

        assert response.data == {"yesProbability": 67}
        assert response.cost == 100
        assert response.metadata.agent_id == 7
        assert response.metadata.request_id.startswith("req-")
        assert len(provider.requests) == 2
        assert provider.requests[0].url.path == "/market/1/data"

        proof = decode_proof_header(provider.requests[1].headers["Authorization"])
        assert proof.nonce == "nonce-fixed"
        assert proof.amount == 100
        assert proof.agent_id == 7
        assert proof.transaction_hash == MOCK_TRANSACTION_HASH
        assert proof.block_number == 0

    def test_logs_one_successful_entry(self):
        client = make_client(FakeProvider())
        client.fetch_data("/market/1/data")

        (entry,) = client.get_usage_logs()
        assert entry.success is True
        assert entry.amount_paid == 100
        assert entry.endpoint == "/market/1/data"
        assert entry.error_message is None

    def test_free_endpoint_costs_nothing(self):
        provider = FakeProvider(free=True)
        client = make_client(provider)

        response = client.fetch_data("/health")

        assert response.cost == 0
        assert len(provider.requests) == 1
        (entry,) = client.get_usage_logs()
        assert entry.success and entry.amount_paid == 0

    def test_params_are_sent_as_query(self):
        provider = FakeProvider(free=True)
        make_client(provider).fetch_data("/signals", params={"market": 3})
        assert provider.requests[0].url.params["market"] == "3"

    def test_insufficient_mock_balance_stops_before_retry(self):
        provider = FakeProvider(amount=1000)
        client = make_client(provider, mock_balance=1)

        with pytest.raises(InsufficientBalanceError) as exc:
            client.fetch_data("/market/1/data")

        assert exc.value.amount == 1000
        assert exc.value.balance == 1
        assert len(provider.requests) == 1
        (entry,) = client.get_usage_logs()
        assert entry.success is False
        assert entry.amount_paid == 0
        assert "Insufficient" in entry.error_message

    def test_mock_balance_is_debited(self):
        client = make_client(FakeProvider(amount=100), mock_balance=250)
        client.fetch_data("/a")
        client.fetch_data("/a")
        assert client.mock_balance == 50
        with pytest.raises(InsufficientBalanceError):
            client.fetch_data("/a")

    def test_blockchain_method_fails_loudly(self):
        provider = FakeProvider()
        client = make_client(provider, method=PaymentMethod.BLOCKCHAIN)

        with pytest.raises(PaymentMethodNotImplementedError) as exc:
            client.fetch_data("/a")

        assert isinstance(exc.value, NotImplementedError)
        assert len(provider.requests) == 1

    def test_rejected_proof_is_not_retried(self):
        provider = FakeProvider(paid_status=403)
        client = make_client(provider)

        with pytest.raises(PaymentRejectedError) as exc:
            client.fetch_data("/a")

        assert exc.value.status_code == 403
        assert "Payment verification failed" in str(exc.value)
        assert len(provider.requests) == 2
        (entry,) = client.get_usage_logs()
        assert entry.success is False

    def test_rejected_proof_keeps_mock_balance(self):
        client = make_client(FakeProvider(amount=100, paid_status=403), mock_balance=250)

        with pytest.raises(PaymentRejectedError):
            client.fetch_data("/a")

        assert client.mock_balance == 250

    def test_malformed_challenge(self):
        def handler(request):
            return httpx.Response(402, headers={"WWW-Authenticate": "x402 %%%"})

        client = make_client(handler)
        with pytest.raises(ProtocolError):
            client.fetch_data("/a")
        assert len(client.get_usage_logs()) == 1

    def test_unexpected_status_before_payment(self):
        client = make_client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(ProtocolError, match="500"):
            client.fetch_data("/a")

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client = make_client(handler)
        with pytest.raises(PaymentTimeoutError):
            client.fetch_data("/a")
        (entry,) = client.get_usage_logs()
        assert entry.success is False

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(NetworkError):
            client.fetch_data("/a")
        assert len(client.get_usage_logs()) == 1


class TestCachedProofs:
    def test_reuses_proof_for_same_nonce(self):
        provider = FakeProvider()
        client = make_client(provider, method=PaymentMethod.CACHED, mock_balance=1000)

        client.fetch_data("/a")
        client.fetch_data("/a")

        assert client.mock_balance == 900
        first = json.loads(provider.requests[1].headers["Authorization"][5:])
        second = json.loads(provider.requests[3].headers["Authorization"][5:])
        assert first == second

    def test_expired_cache_entry_pays_again(self):
        now = [1_700_000_000]
        client = make_client(FakeProvider(), clock=lambda: now[0], method=PaymentMethod.CACHED, mock_balance=1000)

        client.fetch_data("/a")
        now[0] += 3601
        client.fetch_data("/a")

        assert client.mock_balance == 800

    def test_stale_proofs_are_pruned(self):
        now = [1_700_000_000]
        provider = FakeProvider()
        client = make_client(provider, clock=lambda: now[0], proof_cache_ttl=60)

        for i in range(3):
            provider.nonce = f"nonce-{i}"
            client.fetch_data("/a")
        now[0] += 61
        provider.nonce = "nonce-late"
        client.fetch_data("/a")

        assert list(client._proof_cache) == ["nonce-late"]

    def test_rejected_proof_is_not_cached(self):
        client = make_client(FakeProvider(paid_status=403), method=PaymentMethod.CACHED)
        with pytest.raises(PaymentRejectedError):
            client.fetch_data("/a")
        assert client._proof_cache == {}


class TestUsageSummary:
    def test_summary_matches_successful_payments(self):
        client = make_client(FakeProvider(amount=100), mock_balance=150)
        client.fetch_data("/a")
        with pytest.raises(InsufficientBalanceError):
            client.fetch_data("/a")

        summary = client.get_usage_summary()
        assert summary["agent-7"].count == 2
        assert summary["agent-7"].total_cost == 100

    def test_clear_logs(self):
        client = make_client(FakeProvider(free=True))
        client.fetch_data("/a")
        client.clear_logs()
        assert client.get_usage_logs() == []

    def test_context_manager_closes_owned_client(self):
        with GatedDataClient("http://data.test") as client:
            assert client.config.method == PaymentMethod.MOCK
        assert client._http.is_closed
