"""Tests for challenge stores and usage ledgers (in-memory and SQLite)."""

import threading

import pytest

from mandate_agent.errors import ChallengeError
from mandate_agent.ledger import (
    InMemoryChallengeStore,
    InMemoryUsageLedger,
    SqliteChallengeStore,
    SqliteUsageLedger,
    open_ledgers,
)
from mandate_agent.x402_types import DataUsageLog, PaymentChallenge


def _challenge(nonce="nonce-1", amount=100, expires_at=1_000):
    return PaymentChallenge("0xpay", amount, "0x0", nonce, expires_at, 84532)


@pytest.fixture(params=["memory", "sqlite"])
def challenges(request, tmp_path):
    if request.param == "memory":
        return InMemoryChallengeStore()
    return SqliteChallengeStore(tmp_path / "ledger" / "x402.sqlite3")


@pytest.fixture(params=["memory", "sqlite"])
def ledger(request, tmp_path):
    if request.param == "memory":
        return InMemoryUsageLedger()
    return SqliteUsageLedger(tmp_path / "ledger" / "x402.sqlite3")


class TestChallengeStore:
    def test_consume_returns_challenge_once(self, challenges):
        challenges.put(_challenge())
        assert challenges.consume("nonce-1", 100, now=500).nonce == "nonce-1"
        with pytest.raises(ChallengeError, match="Unknown or already used"):
            challenges.consume("nonce-1", 100, now=500)

    def test_unknown_nonce(self, challenges):
        with pytest.raises(ChallengeError):
            challenges.consume("nonce-missing", 100, now=0)

    def test_expired_challenge_rejected(self, challenges):
        challenges.put(_challenge(expires_at=1_000))
        with pytest.raises(ChallengeError, match="expired"):
            challenges.consume("nonce-1", 100, now=1_001)

    def test_amount_mismatch_burns_nonce(self, challenges):
        challenges.put(_challenge(amount=100))
        with pytest.raises(ChallengeError, match="Amount mismatch"):
            challenges.consume("nonce-1", 1, now=0)
        with pytest.raises(ChallengeError, match="Unknown or already used"):
            challenges.consume("nonce-1", 100, now=0)

    def test_evict_expired(self, challenges):
        challenges.put(_challenge("nonce-old", expires_at=10))
        challenges.put(_challenge("nonce-new", expires_at=5_000))
        assert challenges.evict_expired(now=100) == 1
        assert challenges.pending_count() == 1

    def test_amounts_beyond_64_bits_survive(self, challenges):
        challenges.put(_challenge(amount=10**24))
        assert challenges.consume("nonce-1", 10**24, now=0).amount == 10**24


def test_concurrent_consume_succeeds_exactly_once():
    store = InMemoryChallengeStore()
    store.put(_challenge())
    wins, losses = [], []
    barrier = threading.Barrier(8)

    def attempt():
        barrier.wait()
        try:
            store.consume("nonce-1", 100, now=0)
            wins.append(1)
        except ChallengeError:
            losses.append(1)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1
    assert len(losses) == 7


class TestUsageLedger:
    def test_append_and_filter(self, ledger):
        ledger.append(DataUsageLog(1, "/a", 100, 10, True))
        ledger.append(DataUsageLog(2, "/a", 100, 11, False, "Payment verification failed"))

        assert len(ledger.entries()) == 2
        (entry,) = ledger.entries(agent_id=2)
        assert entry.success is False
        assert entry.error_message == "Payment verification failed"

    def test_summary(self, ledger):
        ledger.append(DataUsageLog(1, "/a", 100, 10, True))
        ledger.append(DataUsageLog(1, "/a", 100, 11, False, "bad"))
        summary = ledger.summary()
        assert summary["agent-1"].count == 2
        assert summary["agent-1"].total_cost == 100


def test_open_ledgers_picks_backend(tmp_path):
    memory_challenges, memory_ledger = open_ledgers(None)
    assert isinstance(memory_challenges, InMemoryChallengeStore)
    assert isinstance(memory_ledger, InMemoryUsageLedger)

    path = tmp_path / "x402.sqlite3"
    sqlite_challenges, sqlite_ledger = open_ledgers(path)
    assert isinstance(sqlite_challenges, SqliteChallengeStore)
    sqlite_ledger.append(DataUsageLog(3, "/a", 5, 0, True))
    assert SqliteUsageLedger(path).entries()[0].agent_id == 3
