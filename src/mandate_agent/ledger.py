"""
Server-side challenge table and usage ledger.

Both sit behind small protocols so the gated-data server can run on an
in-memory table (single process) or a SQLite file shared across workers.
The SQLite backends use BEGIN IMMEDIATE transactions so a nonce can only
be consumed once, even when two requests race with the same proof.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional, Protocol

from .errors import ChallengeError
from .storage import ensure_private_dir
from .x402_types import DataUsageLog, PaymentChallenge, UsageSummary, summarize_usage

logger = logging.getLogger(__name__)


class ChallengeStore(Protocol):
    def put(self, challenge: PaymentChallenge) -> None: ...

    def consume(self, nonce: str, amount: int, now: int) -> PaymentChallenge: ...

    def evict_expired(self, now: int) -> int: ...

    def pending_count(self) -> int: ...


class UsageLedger(Protocol):
    def append(self, entry: DataUsageLog) -> None: ...

    def entries(self, agent_id: Optional[int] = None) -> list[DataUsageLog]: ...

    def summary(self) -> dict[str, UsageSummary]: ...


def _check_challenge(challenge: Optional[PaymentChallenge], nonce: str, amount: int, now: int) -> PaymentChallenge:
    if challenge is None:
        raise ChallengeError(f"Unknown or already used nonce: {nonce}")
    if challenge.is_expired(now):
        raise ChallengeError(f"Challenge {nonce} expired at {challenge.expires_at}")
    if challenge.amount != amount:
        raise ChallengeError(f"Amount mismatch: challenge {challenge.amount}, proof {amount}")
    return challenge


class InMemoryChallengeStore:
    """Outstanding challenges keyed by nonce, guarded by a lock."""

    def __init__(self):
        self._challenges: dict[str, PaymentChallenge] = {}
        self._lock = threading.Lock()

    def put(self, challenge: PaymentChallenge) -> None:
        with self._lock:
            self._challenges[challenge.nonce] = challenge

    def consume(self, nonce: str, amount: int, now: int) -> PaymentChallenge:
        """Remove the challenge for `nonce` and validate it against the proof.

        The nonce is burned whether or not validation succeeds.
        """
        with self._lock:
            challenge = self._challenges.pop(nonce, None)
        return _check_challenge(challenge, nonce, amount, now)

    def evict_expired(self, now: int) -> int:
        with self._lock:
            expired = [n for n, c in self._challenges.items() if c.is_expired(now)]
            for nonce in expired:
                del self._challenges[nonce]
        if expired:
            logger.debug("Evicted %d expired challenges", len(expired))
        return len(expired)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._challenges)


class InMemoryUsageLedger:
    """Append-only usage log held in process memory."""

    def __init__(self):
        self._entries: list[DataUsageLog] = []
        self._lock = threading.Lock()

    def append(self, entry: DataUsageLog) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, agent_id: Optional[int] = None) -> list[DataUsageLog]:
        with self._lock:
            snapshot = list(self._entries)
        if agent_id is None:
            return snapshot
        return [e for e in snapshot if e.agent_id == agent_id]

    def summary(self) -> dict[str, UsageSummary]:
        return summarize_usage(self.entries())


class _SqliteBackend:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        ensure_private_dir(self.db_path.parent)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS challenges (
                    nonce TEXT PRIMARY KEY,
                    payment_address TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    token TEXT NOT NULL,
                    expires_at INTEGER NOT NULL,
                    minimum_chain_id INTEGER
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id INTEGER NOT NULL,
                    endpoint TEXT NOT NULL,
                    amount_paid TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    success INTEGER NOT NULL,
                    error_message TEXT
                )
                """
            )


class SqliteChallengeStore(_SqliteBackend):
    """Challenge table persisted in SQLite; safe across processes."""

    def put(self, challenge: PaymentChallenge) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO challenges (
                    nonce, payment_address, amount, token, expires_at, minimum_chain_id
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    challenge.nonce,
                    challenge.payment_address,
                    str(challenge.amount),
                    challenge.token,
                    challenge.expires_at,
                    challenge.minimum_chain_id,
                ),
            )

    def consume(self, nonce: str, amount: int, now: int) -> PaymentChallenge:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT * FROM challenges WHERE nonce = ?", (nonce,)).fetchone()
            if row is not None:
                conn.execute("DELETE FROM challenges WHERE nonce = ?", (nonce,))
            conn.execute("COMMIT")
        challenge = _row_to_challenge(row) if row is not None else None
        return _check_challenge(challenge, nonce, amount, now)

    def evict_expired(self, now: int) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM challenges WHERE expires_at < ?", (now,))
            removed = cursor.rowcount
        if removed:
            logger.debug("Evicted %d expired challenges", removed)
        return removed

    def pending_count(self) -> int:
        with self._connect() as conn:
            (count,) = conn.execute("SELECT COUNT(*) FROM challenges").fetchone()
        return int(count)


class SqliteUsageLedger(_SqliteBackend):
    """Append-only usage log persisted in SQLite."""

    def append(self, entry: DataUsageLog) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO usage_log (
                    agent_id, endpoint, amount_paid, timestamp, success, error_message
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.agent_id,
                    entry.endpoint,
                    str(entry.amount_paid),
                    entry.timestamp,
                    1 if entry.success else 0,
                    entry.error_message,
                ),
            )

    def entries(self, agent_id: Optional[int] = None) -> list[DataUsageLog]:
        with self._connect() as conn:
            if agent_id is None:
                rows = conn.execute("SELECT * FROM usage_log ORDER BY id ASC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM usage_log WHERE agent_id = ? ORDER BY id ASC",
                    (agent_id,),
                ).fetchall()
        return [_row_to_usage(r) for r in rows]

    def summary(self) -> dict[str, UsageSummary]:
        return summarize_usage(self.entries())


def _row_to_challenge(row: sqlite3.Row) -> PaymentChallenge:
    return PaymentChallenge(
        payment_address=row["payment_address"],
        amount=int(row["amount"]),
        token=row["token"],
        nonce=row["nonce"],
        expires_at=row["expires_at"],
        minimum_chain_id=row["minimum_chain_id"],
    )


def _row_to_usage(row: sqlite3.Row) -> DataUsageLog:
    return DataUsageLog(
        agent_id=row["agent_id"],
        endpoint=row["endpoint"],
        amount_paid=int(row["amount_paid"]),
        timestamp=row["timestamp"],
        success=bool(row["success"]),
        error_message=row["error_message"],
    )


def open_ledgers(path: Optional[Path] = None) -> tuple[ChallengeStore, UsageLedger]:
    """In-memory tables when `path` is None, otherwise a shared SQLite file."""
    if path is None:
        return InMemoryChallengeStore(), InMemoryUsageLedger()
    logger.info("Using SQLite ledger at %s", path)
    return SqliteChallengeStore(path), SqliteUsageLedger(path)
