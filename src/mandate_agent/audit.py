"""
Decision audit trail for the agent loop.

Every cycle decision (skip, signal, sizing, execution, data spend) is one
JSON line. Lines are chained: each carries the HMAC of the previous line's
hash plus its own canonical payload, so an edited, dropped or reordered
line is detected the next time the trail is read.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import time
from collections import Counter
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from .storage import default_data_dir, ensure_private_dir, ensure_private_file


AUDIT_KEY_ENV = "MANDATE_AGENT_AUDIT_KEY"
_CHAIN_FIELDS = ("prev_hash", "event_hash")


class AuditChainError(RuntimeError):
    """The trail on disk does not verify against the HMAC chain."""


class EventType(str, Enum):
    CYCLE_SKIPPED = "cycle_skipped"
    SIGNAL_GENERATED = "signal_generated"
    NO_SIGNAL = "no_signal"
    POSITION_SIZED = "position_sized"
    TRADE_EXECUTED = "trade_executed"
    TRADE_FAILED = "trade_failed"
    DATA_USAGE = "data_usage"


@dataclass
class AuditEvent:
    event_type: str
    timestamp: float
    agent_id: Optional[int] = None
    market_id: Optional[int] = None
    direction: Optional[str] = None
    amount: Optional[str] = None  # wei, decimal string
    tx_hash: Optional[str] = None
    success: bool = True
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def payload(self) -> dict[str, Any]:
        """Fields covered by the event hash."""
        return {k: v for k, v in asdict(self).items() if v is not None and k not in _CHAIN_FIELDS}

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "AuditEvent":
        return cls(**{k: v for k, v in record.items() if k in cls.__dataclass_fields__})


class AuditTrail:
    """Append-only, tamper-evident log of agent decisions.

    The HMAC key comes from MANDATE_AGENT_AUDIT_KEY when set, otherwise
    from a key file created on first use under the data directory.
    """

    def __init__(self, path: Optional[Path] = None, key_path: Optional[Path] = None):
        data_dir = default_data_dir()
        self.path = Path(path) if path else data_dir / "audit.jsonl"
        self.key_path = Path(key_path) if key_path else data_dir / "secrets" / "audit_hmac.key"

        for target in (self.path, self.key_path):
            ensure_private_dir(target.parent)
            ensure_private_file(target)

        self._key = self._load_key()
        self._head = self._read_head()

    def _load_key(self) -> bytes:
        from_env = os.getenv(AUDIT_KEY_ENV)
        if from_env:
            return from_env.encode()
        stored = self.key_path.read_bytes().strip()
        if stored:
            return stored
        key = secrets.token_hex(32).encode()
        self.key_path.write_bytes(key)
        return key

    def _read_head(self) -> str:
        head = ""
        for record in self._records():
            head = record.get("event_hash", "") or ""
        return head

    def _records(self) -> Iterator[dict[str, Any]]:
        with open(self.path, "r") as f:
            for line in f:
                if line.strip():
                    yield json.loads(line)

    def _sign(self, payload: dict[str, Any], prev_hash: str) -> str:
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256).hexdigest()

    def log(
        self,
        event_type: EventType,
        agent_id: Optional[int] = None,
        market_id: Optional[int] = None,
        direction: Optional[str] = None,
        amount: Optional[int] = None,
        tx_hash: Optional[str] = None,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            event_type=event_type.value,
            timestamp=time.time(),
            agent_id=agent_id,
            market_id=market_id,
            direction=direction,
            amount=None if amount is None else str(amount),
            tx_hash=tx_hash,
            success=success,
            reason=reason,
            details=details,
            prev_hash=self._head or None,
        )
        event.event_hash = self._sign(event.payload(), self._head)

        with open(self.path, "a") as f:
            f.write(event.to_json() + "\n")
            f.flush()
            os.fsync(f.fileno())

        self._head = event.event_hash
        return event

    def iter_verified(self) -> Iterator[AuditEvent]:
        """Yield events in file order, raising AuditChainError at the first bad link."""
        expected_prev = ""
        for record in self._records():
            event = AuditEvent.from_record(record)
            prev_hash = event.prev_hash or ""
            if prev_hash != expected_prev:
                raise AuditChainError("Audit chain broken: previous hash mismatch")
            if not hmac.compare_digest(self._sign(event.payload(), prev_hash), event.event_hash or ""):
                raise AuditChainError("Audit chain broken: event hash mismatch")
            expected_prev = event.event_hash or ""
            yield event
        self._head = expected_prev

    def read_events(
        self,
        event_type: Optional[EventType] = None,
        market_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [
            e
            for e in self.iter_verified()
            if (event_type is None or e.event_type == event_type.value)
            and (market_id is None or e.market_id == market_id)
        ]
        return events[-limit:] if limit > 0 else []

    def summary(self) -> dict:
        events = list(self.iter_verified())
        executed = [e for e in events if e.event_type == EventType.TRADE_EXECUTED.value]
        return {
            "total_events": len(events),
            "by_type": dict(Counter(e.event_type for e in events)),
            "failures": sum(1 for e in events if not e.success),
            "trades_executed": len(executed),
            "last_tx_hash": executed[-1].tx_hash if executed else None,
            "last_event": events[-1].to_json() if events else None,
        }
