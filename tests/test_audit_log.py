"""Tests for audit event recording, integrity and search."""
import logging

import pytest

from lexledger.audit.events import AuditLog, event_hash
from lexledger.audit.fallback import FallbackBuffer
from lexledger.core.errors import ContractError, StorageError
from lexledger.store.substrate import DurableStore


class TestRecord:
    """Event creation."""

    def test_event_fields(self, audit_log):
        event = audit_log.record("create", "cliente", "c1", {"nome": "Ana"})

        assert event["id"].startswith("audit_")
        assert event["user_id"] == "user-1"
        assert event["user_ip"] == "10.0.0.7"
        assert event["user_agent"] == "pytest"
        assert event["entity_id"] == "c1"
        assert event["data"] == {"nome": "Ana"}
        assert audit_log.get(event["id"]) == event

    def test_payload_sanitized_before_hashing(self, audit_log):
        event = audit_log.record("update", "cliente", "c1", {"cpf": "12345678901"})

        assert event["data"]["cpf"] == "12********01"
        assert event["hash"] == event_hash(event)

    def test_hash_deterministic(self, audit_log):
        """Recomputing the hash of a stored event yields the stored value."""
        event = audit_log.record("login", "usuario", "u1")
        stored = audit_log.get(event["id"])

        assert event_hash(stored) == stored["hash"]
        assert ":" in stored["hash"]

    def test_hash_ignores_merkle_tree_id(self, audit_log):
        event = audit_log.record("login", "usuario", "u1")
        anchored = {**event, "merkle_tree_id": "merkle_x"}
        assert event_hash(anchored) == event["hash"]

    def test_unknown_type_warns_but_records(self, audit_log, caplog):
        with caplog.at_level(logging.WARNING, logger="lexledger.audit.events"):
            event = audit_log.record("teleport", "nave", "n1")

        assert audit_log.get(event["id"]) is not None
        assert "Unknown audit event type" in caplog.text
        assert "Unknown audit entity" in caplog.text

    def test_hook_failure_does_not_propagate(self, audit_log):
        def broken(event):
            raise RuntimeError("hook exploded")

        seen = []
        audit_log.add_hook(broken)
        audit_log.add_hook(seen.append)

        event = audit_log.record("create", "lead", "l1")
        assert seen[0]["id"] == event["id"]


class TestFallback:
    """Persistence failures."""

    @pytest.fixture
    def full_log(self, tmp_path, clock):
        substrate = DurableStore(tmp_path / "full", max_bytes=10)
        buffer = FallbackBuffer(tmp_path / "audit-fallback.jsonl", capacity=3)
        return AuditLog(substrate, clock, fallback=buffer)

    def test_storage_error_buffered_and_raised(self, full_log):
        with pytest.raises(StorageError):
            full_log.record("delete", "processo", "p1", {"motivo": "x"})

        buffered = full_log.fallback.read_all()
        assert len(buffered) == 1
        assert buffered[0]["event_type"] == "delete"
        assert buffered[0]["entity_id"] == "p1"
        assert "quota" in buffered[0]["error"]

    def test_buffer_drops_oldest(self, full_log):
        for i in range(5):
            full_log.try_record("create", "lead", f"l{i}")

        assert [r["entity_id"] for r in full_log.fallback.read_all()] == ["l2", "l3", "l4"]

    def test_try_record_returns_none(self, full_log):
        assert full_log.try_record("create", "lead", "l1") is None


class TestVerifyIntegrity:
    """Per-event verification."""

    def test_untampered_unanchored(self, audit_log):
        event = audit_log.record("create", "cliente", "c1", {"nome": "Ana"})
        result = audit_log.verify_integrity(event)

        assert result["hash_valid"] is True
        assert result["merkle_proof_valid"] is False
        assert result["overall_valid"] is True

    def test_tampered_data_detected(self, audit_log):
        event = audit_log.record("create", "cliente", "c1", {"nome": "Ana"})
        event["data"]["nome"] = "Eva"

        result = audit_log.verify_integrity(event)
        assert result["hash_valid"] is False
        assert result["overall_valid"] is False

    def test_anchored_event(self, audit_log, consolidator):
        event = audit_log.record("create", "cliente", "c1")
        tree = consolidator.consolidate()

        result = audit_log.verify_integrity(audit_log.get(event["id"]))
        assert result["merkle_tree_id"] == tree["id"]
        assert result["merkle_proof_valid"] is True
        assert result["overall_valid"] is True

    def test_attach_tree_only_once(self, audit_log):
        event = audit_log.record("create", "cliente", "c1")
        audit_log.attach_tree([event["id"]], "merkle_a")

        with pytest.raises(ContractError):
            audit_log.attach_tree([event["id"]], "merkle_b")


class TestSearch:
    """Filtering, sorting and paging."""

    @pytest.fixture
    def populated(self, audit_log, fake_time):
        audit_log.record("create", "cliente", "c1", {"nome": "Ana Souza"})
        fake_time.advance(days=1)
        audit_log.record("update", "cliente", "c1", {"nome": "Ana Lima"})
        fake_time.advance(days=1)
        audit_log.record("create", "processo", "p1", {"numero": "0001"})
        return audit_log

    def test_default_newest_first(self, populated):
        result = populated.search_audit_events()

        assert result["total"] == 3
        assert [e["entity_id"] for e in result["events"]] == ["p1", "c1", "c1"]
        assert result["events"][0]["event_type"] == "create"

    def test_filters(self, populated):
        result = populated.search_audit_events({"entity": "cliente", "event_type": "update"})
        assert result["total"] == 1
        assert result["events"][0]["data"]["nome"] == "Ana Lima"

    def test_date_range_inclusive_end_day(self, populated):
        result = populated.search_audit_events({"start_date": "2026-01-06", "end_date": "2026-01-06"})
        assert [e["event_type"] for e in result["events"]] == ["update"]

    def test_search_text(self, populated):
        result = populated.search_audit_events({"search_text": "souza"})
        assert result["total"] == 1

    def test_paging_and_ascending(self, populated):
        result = populated.search_audit_events(None, {"limit": 1, "offset": 1, "sort_direction": "asc"})

        assert result["total"] == 3
        assert len(result["events"]) == 1
        assert result["events"][0]["event_type"] == "update"

    def test_unknown_filter_rejected(self, populated):
        with pytest.raises(ContractError):
            populated.search_audit_events({"color": "blue"})

    def test_invalid_options_rejected(self, populated):
        with pytest.raises(ContractError):
            populated.search_audit_events(None, {"sort_direction": "sideways"})
        with pytest.raises(ContractError):
            populated.search_audit_events(None, {"limit": -1})
        with pytest.raises(ContractError):
            populated.search_audit_events({"start_date": "not-a-date"})
