"""Tests for the event log: proves append-only, fail-closed persistence."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from coldchain.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _event(n: int, kind: EventKind = EventKind.EVIDENCE_SUBMITTED) -> EventRecord:
    return EventRecord.create(
        event_id=f"EVT-{n:08d}",
        event_kind=kind,
        actor_id="sensor_1",
        payload={"shipment_id": 1, "node_id": n, "value": True},
        timestamp_utc=_now(),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _event(1).event_hash == _event(1).event_hash
        assert _event(1).event_hash.startswith("sha256:")

    def test_hash_covers_payload(self) -> None:
        assert _event(1).event_hash != _event(2).event_hash

    def test_timestamp_round_trip(self) -> None:
        assert _event(1).timestamp == _now()


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2, EventKind.SHIPMENT_SETTLED))
        assert log.count == 2
        assert [e.event_id for e in log.events(EventKind.SHIPMENT_SETTLED)] == ["EVT-00000002"]
        assert log.last_event.event_id == "EVT-00000002"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError):
            log.append(_event(1))
        assert log.count == 1

    def test_events_for_shipment(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(EventRecord.create("EVT-X", EventKind.CPT_SET, "op", {"node_id": 1}))
        assert len(log.events_for_shipment(1)) == 1

    def test_events_returns_copy(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.events().clear()
        assert log.count == 1


class TestPersistence:
    def test_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "events.jsonl"
        log = EventLog(path)
        log.append(_event(1))
        log.append(_event(2))

        reloaded = EventLog(path)
        assert reloaded.count == 2
        assert reloaded.events()[1] == log.events()[1]

    def test_tampered_record_fails_closed(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(path)
        log.append(_event(1))
        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["value"] = False
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(path)

    def test_duplicate_record_fails_closed(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID"):
            EventLog(path)

    def test_blank_lines_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(_event(1))
        with path.open("a", encoding="utf-8") as f:
            f.write("\n\n")
        assert EventLog(path).count == 1

    def test_write_failure_leaves_log_unchanged(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("", encoding="utf-8")
        log = EventLog(blocker / "events.jsonl")
        with pytest.raises(OSError):
            log.append(_event(1))
        assert log.count == 0
