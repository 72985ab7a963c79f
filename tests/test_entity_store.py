"""Tests for the schema-indexed entity store."""
import pytest

from lexledger.core.errors import ConstraintError, ContractError, InvalidIndexError, StorageError
from lexledger.store.entity import EntityStore
from lexledger.store.schema import IndexSpec


class TestSave:
    """Upsert semantics and queue coupling."""

    def test_save_generates_id_and_stamps(self, store):
        """A record without id gets one, plus updated_at."""
        saved = store.save("clientes", {"nome": "Ana"})

        assert saved["id"]
        assert saved["updated_at"].endswith("Z")
        assert store.get("clientes", saved["id"]) == saved

    def test_upsert_idempotence(self, store):
        """Saving the same id twice leaves one record with the later stamp."""
        first = store.save("clientes", {"id": "c1", "nome": "Ana"})
        second = store.save("clientes", {"id": "c1", "nome": "Ana"})

        assert store.count("clientes") == 1
        assert second["updated_at"] > first["updated_at"]
        assert store.get("clientes", "c1")["updated_at"] == second["updated_at"]

    def test_save_queues_insert_then_update(self, store, queue):
        """First save queues an insert, later saves queue updates."""
        store.save("clientes", {"id": "c1", "nome": "Ana"})
        store.save("clientes", {"id": "c1", "nome": "Ana Maria"})

        ops = [e["operation"] for e in queue.pending()]
        assert ops == ["insert", "update"]
        assert queue.pending()[1]["payload"]["nome"] == "Ana Maria"

    def test_local_only_does_not_queue(self, store, queue):
        """Mirroring server state never creates queue entries."""
        store.save("clientes", {"id": "c1"}, mode="local_only")
        assert queue.pending_count() == 0

    def test_unknown_mode_rejected(self, store):
        with pytest.raises(ContractError):
            store.save("clientes", {"id": "c1"}, mode="eventually")

    def test_unknown_collection_rejected(self, store):
        with pytest.raises(ContractError):
            store.save("planetas", {"id": "p1"})

    def test_non_string_id_rejected(self, store):
        with pytest.raises(ContractError):
            store.save("clientes", {"id": 7})

    def test_on_enqueue_hook_receives_entry(self, substrate, clock, queue):
        """The write-through hook sees every queued mutation."""
        seen = []
        store = EntityStore(substrate, clock, queue=queue, on_enqueue=seen.append)
        store.save("leads", {"id": "l1", "telefone": "11999990000"})

        assert len(seen) == 1
        assert seen[0]["record_id"] == "l1"


class TestIndexes:
    """Secondary index maintenance."""

    def test_query_by_index(self, store):
        """Non-unique index returns every matching record."""
        store.save("processos", {"id": "p1", "cliente_id": "c1", "numero": "001"})
        store.save("processos", {"id": "p2", "cliente_id": "c1", "numero": "002"})
        store.save("processos", {"id": "p3", "cliente_id": "c2", "numero": "003"})

        found = store.query_by_index("processos", "cliente_id", "c1")
        assert [r["id"] for r in found] == ["p1", "p2"]

    def test_index_follows_update_and_delete(self, store):
        """Updates move index entries; deletes remove them."""
        store.save("processos", {"id": "p1", "cliente_id": "c1"})
        store.save("processos", {"id": "p1", "cliente_id": "c2"})

        assert store.query_by_index("processos", "cliente_id", "c1") == []
        assert len(store.query_by_index("processos", "cliente_id", "c2")) == 1

        store.delete("processos", "p1")
        assert store.query_by_index("processos", "cliente_id", "c2") == []

    def test_unique_index_violation(self, store):
        """Two clients cannot share a cpf."""
        store.save("clientes", {"id": "c1", "cpf": "12345678901"})
        with pytest.raises(ConstraintError):
            store.save("clientes", {"id": "c2", "cpf": "12345678901"})
        assert store.get("clientes", "c2") is None

    def test_unique_index_allows_same_record(self, store):
        """Re-saving the owner of a unique value is fine."""
        store.save("clientes", {"id": "c1", "cpf": "12345678901"})
        store.save("clientes", {"id": "c1", "cpf": "12345678901", "nome": "Ana"})
        assert store.get("clientes", "c1")["nome"] == "Ana"

    def test_unknown_index(self, store):
        with pytest.raises(InvalidIndexError):
            store.query_by_index("clientes", "email", "a@b.c")

    def test_indexes_rebuilt_after_reopen(self, substrate, clock, queue):
        """A fresh store rebuilds indexes from the substrate."""
        EntityStore(substrate, clock, queue=queue).save("leads", {"id": "l1", "origem": "site"})

        reopened = EntityStore(substrate, clock)
        assert [r["id"] for r in reopened.query_by_index("leads", "origem", "site")] == ["l1"]

    def test_register_collection(self, store):
        """Custom collections get their indexes plus updated_at."""
        store.register_collection("tarefas", ["responsavel", IndexSpec("codigo", "codigo", unique=True)])

        names = {spec.name for spec in store.indexes("tarefas")}
        assert names == {"responsavel", "codigo", "updated_at"}
        store.save("tarefas", {"id": "t1", "responsavel": "u1", "codigo": "X"})
        assert len(store.query_by_index("tarefas", "responsavel", "u1")) == 1

    def test_reserved_collection_rejected(self, store):
        with pytest.raises(ContractError):
            store.register_collection("sync_queue")


class TestReadsAndDelete:
    """get_all, count and delete."""

    def test_get_all_without_limit_in_id_order(self, store):
        for record_id in ["b", "a", "c"]:
            store.save("leads", {"id": record_id})
        assert [r["id"] for r in store.get_all("leads")] == ["a", "b", "c"]

    def test_get_all_with_limit_newest_first(self, store):
        """limit returns the most recently updated records."""
        for record_id in ["a", "b", "c"]:
            store.save("leads", {"id": record_id})
        store.save("leads", {"id": "a", "nome": "touched"})

        assert [r["id"] for r in store.get_all("leads", limit=2)] == ["a", "c"]

    def test_delete_queues_id_payload(self, store, queue):
        """Deletes queue {"id": id} even for records never saved locally."""
        store.delete("clientes", "ghost")

        entry = queue.pending()[0]
        assert entry["operation"] == "delete"
        assert entry["payload"] == {"id": "ghost"}

    def test_count(self, store):
        store.save("leads", {"id": "l1"})
        store.save("leads", {"id": "l2"})
        store.delete("leads", "l1")
        assert store.count("leads") == 1


class TestQueueFailure:
    """A write whose queue entry cannot be stored is undone."""

    def test_quota_hit_by_queue_entry_rolls_back_insert(self, store, substrate, queue):
        store.save("clientes", {"id": "c0", "cpf": "00000000000"})
        entity_line = substrate.path_for("clientes").stat().st_size
        store.delete("clientes", "c0", mode="local_only")

        # Room for an entity line of the same shape, not for the larger queue entry after it
        substrate.max_bytes = substrate.size_bytes() + entity_line + 40
        with pytest.raises(StorageError):
            store.save("clientes", {"id": "c1", "cpf": "11111111111"})

        assert store.get("clientes", "c1") is None
        assert store.query_by_index("clientes", "cpf", "11111111111") == []
        assert queue.pending_for("clientes", "c1") == []

    def test_failed_enqueue_restores_previous_version(self, store, queue, monkeypatch):
        store.save("clientes", {"id": "c1", "nome": "Ana", "cpf": "12345678901"})

        def full(collection, operation, payload):
            raise StorageError("Storage quota exceeded")

        monkeypatch.setattr(queue, "enqueue", full)
        with pytest.raises(StorageError):
            store.save("clientes", {"id": "c1", "nome": "Bia", "cpf": "98765432100"})

        assert store.get("clientes", "c1")["nome"] == "Ana"
        assert store.query_by_index("clientes", "cpf", "12345678901")[0]["id"] == "c1"
        assert store.query_by_index("clientes", "cpf", "98765432100") == []

    def test_failed_enqueue_restores_deleted_record(self, store, queue, monkeypatch):
        store.save("clientes", {"id": "c1", "nome": "Ana"})

        def full(collection, operation, payload):
            raise StorageError("Storage quota exceeded")

        monkeypatch.setattr(queue, "enqueue", full)
        with pytest.raises(StorageError):
            store.delete("clientes", "c1")

        assert store.get("clientes", "c1")["nome"] == "Ana"
        assert [r["id"] for r in store.query_by_index("clientes", "nome", "Ana")] == ["c1"]

    def test_rollback_survives_reopen(self, tmp_path, clock, monkeypatch):
        from lexledger.offline.queue import SyncQueue
        from lexledger.store.substrate import DurableStore

        substrate = DurableStore(tmp_path / "reopen")
        queue = SyncQueue(substrate, clock)
        store = EntityStore(substrate, clock, queue=queue)

        def full(collection, operation, payload):
            raise StorageError("Storage quota exceeded")

        monkeypatch.setattr(queue, "enqueue", full)
        with pytest.raises(StorageError):
            store.save("clientes", {"id": "c1"})

        assert DurableStore(tmp_path / "reopen").get("clientes", "c1") is None
