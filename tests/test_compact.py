"""Tests for daily rollups and audit retention."""
import pytest

from lexledger.audit.compact import AuditCompactor


@pytest.fixture
def compactor(audit_log, consolidator, clock):
    return AuditCompactor(audit_log, consolidator, clock, min_events=3)


def _seed(audit_log):
    audit_log.record("create", "cliente", "c1")
    audit_log.record("create", "cliente", "c2")
    audit_log.record("update", "cliente", "c1")
    audit_log.record("create", "processo", "p1")


class TestRollup:
    """Day + entity + event_type summaries."""

    def test_groups_counted(self, audit_log, compactor):
        _seed(audit_log)

        summary = compactor.consolidate_audit_logs()

        assert summary["events_count"] == 4
        assert summary["consolidated_count"] == 3
        logs = {(c["entity"], c["event_type"]): c for c in audit_log.consolidated_logs()}
        assert logs[("cliente", "create")]["count"] == 2
        assert logs[("cliente", "create")]["unique_entities"] == 2
        assert logs[("cliente", "create")]["date"] == "2026-01-05"
        assert logs[("processo", "create")]["count"] == 1

    def test_watermark_prevents_double_count(self, audit_log, compactor):
        _seed(audit_log)
        compactor.consolidate_audit_logs()

        assert compactor.consolidate_audit_logs()["events_count"] == 0

        audit_log.record("delete", "cliente", "c2")
        assert compactor.consolidate_audit_logs()["events_count"] == 1
        total = sum(c["count"] for c in audit_log.consolidated_logs())
        assert total == 5

    def test_due_after_threshold_and_interval(self, audit_log, compactor, fake_time):
        assert compactor.is_due() is False
        _seed(audit_log)
        assert compactor.is_due() is True

        compactor.consolidate_audit_logs()
        fake_time.advance(hours=23)
        assert compactor.is_due() is False

        fake_time.advance(hours=1, seconds=1)
        assert compactor.is_due() is True

    def test_runs_as_record_hook(self, audit_log, compactor):
        audit_log.add_hook(compactor.check_and_consolidate)
        _seed(audit_log)

        last = audit_log.get_meta("last_consolidation")
        assert last is not None
        assert last["events_count"] == 3


class TestRetention:
    """Pruning of detailed events and rollups."""

    def test_prunes_only_anchored_rolled_up_events(self, audit_log, consolidator, compactor, fake_time):
        anchored = [audit_log.record("create", "cliente", f"c{i}") for i in range(3)]
        tree = consolidator.consolidate()
        loose = audit_log.record("create", "cliente", "loose")
        compactor.consolidate_audit_logs()

        fake_time.advance(days=91)
        result = compactor.cleanup_old_audit_logs()

        assert result["events_removed"] == 3
        assert result["trees_marked"] == 1
        for event in anchored:
            assert audit_log.get(event["id"]) is None
        assert audit_log.get(loose["id"]) is not None

        check = consolidator.verify_merkle_tree_integrity(tree["id"])
        assert check["events_pruned"] is True
        assert check["overall_valid"] is False

    def test_events_after_watermark_kept(self, audit_log, consolidator, compactor, fake_time):
        compactor.consolidate_audit_logs()
        event = audit_log.record("create", "cliente", "c1")
        consolidator.consolidate()

        fake_time.advance(days=91)
        compactor.cleanup_old_audit_logs()

        assert audit_log.get(event["id"]) is not None

    def test_recent_events_kept(self, audit_log, consolidator, compactor, fake_time):
        _seed(audit_log)
        consolidator.consolidate()
        compactor.consolidate_audit_logs()

        fake_time.advance(days=30)
        assert compactor.cleanup_old_audit_logs()["events_removed"] == 0

    def test_old_rollups_removed(self, audit_log, compactor, fake_time):
        _seed(audit_log)
        compactor.consolidate_audit_logs()

        fake_time.advance(days=5 * 365 + 2)
        result = compactor.cleanup_old_audit_logs()

        assert result["consolidated_removed"] == 3
        assert audit_log.consolidated_logs() == []
