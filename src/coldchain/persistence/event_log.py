"""Append-only event log: the durable audit trail of the engine.

Every state change produces an event that is appended here before the
change is applied in memory. Events are immutable once written. The log
serves as:
1. The audit trail anyone can inspect (one event per evidence submission,
   one per settlement attempt outcome).
2. The source of truth for state reconstruction: the service rebuilds
   roles, model, shipments and balances by replaying it.

Persistence is a JSONL file, one canonical JSON object per line. Each
record carries the SHA-256 of its own canonical content; tampered or
duplicated records fail closed on load.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Classification of engine events."""
    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    PRIORS_SET = "priors_set"
    CPT_SET = "cpt_set"
    SHIPMENT_CREATED = "shipment_created"
    EVIDENCE_SUBMITTED = "evidence_submitted"
    SHIPMENT_SETTLED = "shipment_settled"
    SETTLEMENT_REJECTED = "settlement_rejected"


def _canonical_bytes(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> bytes:
    return json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event.

    event_hash is computed at creation time over the canonical JSON of
    every other field.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        digest = hashlib.sha256(
            _canonical_bytes(event_id, event_kind.value, ts_str, actor_id, payload)
        ).hexdigest()
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=f"sha256:{digest}",
        )

    @property
    def timestamp(self) -> datetime:
        return datetime.strptime(self.timestamp_utc, "%Y-%m-%dT%H:%M:%SZ").replace(
            tzinfo=timezone.utc,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection)
        and OSError if the file write fails. In both cases the in-memory
        log is unchanged.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(self._storage_path, event)

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for_shipment(self, shipment_id: int) -> list[EventRecord]:
        return [e for e in self._events if e.payload.get("shipment_id") == shipment_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    def _append_to_file(self, path: Path, event: EventRecord) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = "sha256:" + hashlib.sha256(
                    _canonical_bytes(
                        data["event_id"],
                        data["event_kind"],
                        data["timestamp_utc"],
                        data["actor_id"],
                        data["payload"],
                    )
                ).hexdigest()
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event_id)
        logger.debug("Loaded %d events from %s", len(self._events), path)
