"""Tests for the JSONL durable substrate."""
import pytest

from lexledger.core.errors import ContractError, StorageError
from lexledger.store.substrate import DurableStore


class TestDurableStore:
    """Put, delete and replay across instances."""

    def test_put_get_roundtrip_survives_reopen(self, tmp_path):
        """Values are replayed from the log by a fresh instance."""
        first = DurableStore(tmp_path)
        first.put("clientes", "c1", {"id": "c1", "nome": "Ana"})
        first.put("clientes", "c2", {"id": "c2", "nome": "Bia"})
        first.delete("clientes", "c2")

        second = DurableStore(tmp_path)
        assert second.get("clientes", "c1") == {"id": "c1", "nome": "Ana"}
        assert second.get("clientes", "c2") is None
        assert second.count("clientes") == 1

    def test_get_returns_copy(self, substrate):
        """Mutating a returned value does not change stored state."""
        substrate.put("clientes", "c1", {"id": "c1", "tags": ["a"]})
        value = substrate.get("clientes", "c1")
        value["tags"].append("b")

        assert substrate.get("clientes", "c1")["tags"] == ["a"]

    def test_delete_missing_returns_false(self, substrate):
        """Deleting an absent key is a no-op."""
        assert substrate.delete("clientes", "nope") is False

    def test_items_sorted_by_key(self, substrate):
        """items() is ordered by key."""
        for key in ["b", "c", "a"]:
            substrate.put("leads", key, {"id": key})

        assert [k for k, _ in substrate.items("leads")] == ["a", "b", "c"]

    def test_invalid_collection_name(self, substrate):
        """Collection names must be simple identifiers."""
        with pytest.raises(ContractError):
            substrate.put("../etc", "k", {})

    def test_torn_line_skipped(self, tmp_path):
        """A partial trailing line from a crash does not lose earlier data."""
        store = DurableStore(tmp_path)
        store.put("clientes", "c1", {"id": "c1"})
        with open(tmp_path / "clientes.jsonl", "a", encoding="utf-8") as f:
            f.write('{"op": "put", "key": "c2", "val')

        reopened = DurableStore(tmp_path)
        assert reopened.get("clientes", "c1") == {"id": "c1"}
        assert reopened.get("clientes", "c2") is None


class TestSequences:
    """Auto-increment keys."""

    def test_next_sequence_increments(self, substrate):
        """Reserved sequence numbers strictly increase."""
        assert substrate.next_sequence("sync_queue") == 1
        assert substrate.next_sequence("sync_queue") == 2

    def test_sequence_survives_delete_and_compact(self, tmp_path):
        """Ids are never reused after the newest entry is deleted."""
        store = DurableStore(tmp_path)
        for _ in range(3):
            key = store.next_sequence("sync_queue")
            store.put("sync_queue", key, {"id": key})
        store.delete("sync_queue", 3)
        store.compact("sync_queue")

        reopened = DurableStore(tmp_path)
        assert reopened.next_sequence("sync_queue") == 4


class TestCompactionAndQuota:
    """Log compaction and storage quota."""

    def test_compact_keeps_live_values(self, tmp_path):
        """Compaction rewrites one line per live key plus the sequence line."""
        store = DurableStore(tmp_path)
        for i in range(10):
            store.put("leads", "l1", {"id": "l1", "n": i})
        store.put("leads", "l2", {"id": "l2"})

        lines = store.compact("leads")

        assert lines == 3
        reopened = DurableStore(tmp_path)
        assert reopened.get("leads", "l1")["n"] == 9
        assert reopened.count("leads") == 2

    def test_quota_exceeded_raises_storage_error(self, tmp_path):
        """Writes beyond max_bytes fail without changing state."""
        store = DurableStore(tmp_path, max_bytes=200)
        store.put("leads", "l1", {"id": "l1"})

        with pytest.raises(StorageError):
            store.put("leads", "l2", {"id": "l2", "blob": "x" * 500})
        assert store.get("leads", "l2") is None

    def test_size_and_collections(self, substrate):
        """size_bytes counts every log; collections lists them."""
        substrate.put("leads", "l1", {"id": "l1"})
        substrate.put("clientes", "c1", {"id": "c1"})

        assert substrate.size_bytes() > 0
        assert substrate.collections() == ["clientes", "leads"]
