"""Tests for Merkle consolidation, timestamp proofs and verification."""
from lexledger.audit.anchor import MerkleConsolidator
from lexledger.audit.events import EVENTS_COLLECTION


def _record(audit_log, n, entity="cliente"):
    return [audit_log.record("update", entity, f"id-{i}", {"n": i}) for i in range(n)]


class TestTrigger:
    """Count and interval triggers."""

    def test_batch_threshold(self, audit_log, clock):
        """501 events with threshold 500: one tree over the first 500."""
        consolidator = MerkleConsolidator(audit_log, clock, batch_size=500)
        audit_log.add_hook(consolidator.maybe_consolidate)

        events = _record(audit_log, 501)

        trees = consolidator.trees()
        assert len(trees) == 1
        assert trees[0]["events_count"] == 500
        assert trees[0]["event_ids"] == [e["id"] for e in events[:500]]
        assert audit_log.get(events[500]["id"]).get("merkle_tree_id") is None
        assert consolidator.pending_count() == 1

    def test_below_threshold_waits(self, audit_log, consolidator):
        _record(audit_log, 3)
        assert consolidator.maybe_consolidate() is None

    def test_interval_elapsed(self, audit_log, consolidator, fake_time):
        _record(audit_log, 2)
        fake_time.advance(hours=6, seconds=1)

        tree = consolidator.maybe_consolidate()
        assert tree["events_count"] == 2

    def test_interval_measured_from_last_tree(self, audit_log, consolidator, fake_time):
        _record(audit_log, 1)
        consolidator.consolidate()

        fake_time.advance(hours=5)
        _record(audit_log, 1)
        assert consolidator.should_consolidate() is False

        fake_time.advance(hours=1, seconds=1)
        assert consolidator.should_consolidate() is True

    def test_nothing_pending(self, consolidator, fake_time):
        fake_time.advance(days=1)
        assert consolidator.consolidate() is None
        assert consolidator.should_consolidate() is False


class TestTreeRecord:
    """Stored tree contents."""

    def test_tree_fields_and_backfill(self, audit_log, consolidator):
        events = _record(audit_log, 3)
        tree = consolidator.consolidate()

        assert tree["height"] == 2
        assert tree["events_count"] == 3
        assert tree["first_event_timestamp"] == events[0]["timestamp"]
        assert tree["last_event_timestamp"] == events[2]["timestamp"]
        for event in events:
            assert audit_log.get(event["id"])["merkle_tree_id"] == tree["id"]
        assert audit_log.get_meta("last_merkle_tree")["merkle_tree_id"] == tree["id"]

    def test_backfill_keeps_event_hash(self, audit_log, consolidator):
        event = _record(audit_log, 1)[0]
        consolidator.consolidate()

        assert audit_log.verify_integrity(audit_log.get(event["id"]))["hash_valid"] is True


class TestVerification:
    """Tree integrity and inclusion proofs."""

    def test_untampered_tree_valid(self, audit_log, consolidator):
        _record(audit_log, 5)
        tree = consolidator.consolidate()

        result = consolidator.verify_merkle_tree_integrity(tree["id"])
        assert result["tree_found"] is True
        assert result["events_found"] == 5
        assert result["root_hash_valid"] is True
        assert result["timestamp_valid"] is None
        assert result["overall_valid"] is True

    def test_tampered_event_detected(self, audit_log, consolidator, substrate):
        events = _record(audit_log, 4)
        tree = consolidator.consolidate()

        tampered = audit_log.get(events[2]["id"])
        tampered["data"]["n"] = 999
        substrate.put(EVENTS_COLLECTION, tampered["id"], tampered)

        result = consolidator.verify_merkle_tree_integrity(tree["id"])
        assert result["root_hash_valid"] is False
        assert result["overall_valid"] is False
        assert consolidator.prove_inclusion(events[2]["id"])["verified"] is False

    def test_missing_event_detected(self, audit_log, consolidator, substrate):
        events = _record(audit_log, 3)
        tree = consolidator.consolidate()
        substrate.delete(EVENTS_COLLECTION, events[0]["id"])

        result = consolidator.verify_merkle_tree_integrity(tree["id"])
        assert result["events_found"] == 2
        assert result["overall_valid"] is False

    def test_unknown_tree(self, consolidator):
        result = consolidator.verify_merkle_tree_integrity("merkle_missing")
        assert result["tree_found"] is False
        assert result["overall_valid"] is False

    def test_prove_inclusion(self, audit_log, consolidator):
        events = _record(audit_log, 5)
        tree = consolidator.consolidate()

        proof = consolidator.prove_inclusion(events[3]["id"])
        assert proof["verified"] is True
        assert proof["merkle_tree_id"] == tree["id"]
        assert proof["root_hash"] == tree["root_hash"]
        assert len(proof["proof_path"]) == tree["height"]

    def test_prove_unanchored(self, audit_log, consolidator):
        event = _record(audit_log, 1)[0]
        proof = consolidator.prove_inclusion(event["id"])
        assert proof["verified"] is False
        assert proof["merkle_tree_id"] is None


class TestTimestampProofs:
    """External witness of tree roots."""

    def test_authoritative_proof(self, audit_log, clock, timestamper):
        authority = timestamper
        consolidator = MerkleConsolidator(audit_log, clock, timestamper=authority)
        _record(audit_log, 2)
        tree = consolidator.consolidate()

        proof = consolidator.timestamp_for(tree["id"])
        assert authority.stamped == [tree["root_hash"]]
        assert proof["authoritative"] is True
        assert proof["source"] == "fake-tsa"

        result = consolidator.verify_merkle_tree_integrity(tree["id"])
        assert result["timestamp_valid"] is True
        assert result["timestamp_authoritative"] is True

    def test_authority_failure_falls_back(self, audit_log, clock, timestamper):
        timestamper.failing = True
        consolidator = MerkleConsolidator(audit_log, clock, timestamper=timestamper)
        _record(audit_log, 2)
        tree = consolidator.consolidate()

        proof = consolidator.timestamp_for(tree["id"])
        assert proof["source"] == "local_fallback"
        assert proof["authoritative"] is False
        assert "unreachable" in proof["error"]

        result = consolidator.verify_merkle_tree_integrity(tree["id"])
        assert result["timestamp_valid"] is True
        assert result["timestamp_authoritative"] is False
        assert result["overall_valid"] is True

    def test_authority_connection_error_falls_back(self, audit_log, clock):
        """Any failure of a plugged-in authority still leaves the tree with a proof."""
        class ResetAuthority:
            def stamp(self, root_hash):
                raise ConnectionError("tsa socket reset")

        consolidator = MerkleConsolidator(audit_log, clock, timestamper=ResetAuthority())
        _record(audit_log, 2)
        tree = consolidator.consolidate()

        proof = consolidator.timestamp_for(tree["id"])
        assert proof["source"] == "local_fallback"
        assert proof["root_hash"] == tree["root_hash"]
        assert "tsa socket reset" in proof["error"]

    def test_authority_without_timestamp_falls_back(self, audit_log, clock):
        class BlankAuthority:
            def stamp(self, root_hash):
                return None

        consolidator = MerkleConsolidator(audit_log, clock, timestamper=BlankAuthority())
        _record(audit_log, 1)
        tree = consolidator.consolidate()

        assert consolidator.timestamp_for(tree["id"])["authoritative"] is False
