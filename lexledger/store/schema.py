"""Collection schema for the local entity mirror.

One collection per server entity, each with its secondary indexes.
Every collection carries an updated_at index so get_all(limit=N) can
return the most recently touched records.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class IndexSpec:
    """Secondary index over a single record field."""
    name: str
    field: str
    unique: bool = False


def _indexes(*specs: tuple) -> tuple[IndexSpec, ...]:
    built = [IndexSpec(name, name, unique) for name, unique in specs]
    built.append(IndexSpec("updated_at", "updated_at"))
    return tuple(built)


DEFAULT_SCHEMA: dict[str, tuple[IndexSpec, ...]] = {
    "clientes": _indexes(("cpf", True), ("nome", False)),
    "processos": _indexes(("cliente_id", False), ("numero", True), ("status", False)),
    "atendimentos": _indexes(("cliente_id", False), ("data", False)),
    "documentos": _indexes(("cliente_id", False), ("processo_id", False), ("tipo", False)),
    "pericias": _indexes(
        ("cliente_id", False), ("processo_id", False), ("data", False), ("status", False)
    ),
    "leads": _indexes(("telefone", True), ("nome", False), ("origem", False)),
    "campanhas": _indexes(("nome", True), ("status", False)),
    "mensagens": _indexes(
        ("lead_id", False), ("campanha_id", False), ("status", False), ("agendamento", False)
    ),
    "jurisprudencias": _indexes(
        ("fonte", False), ("termo", False), ("favorito", False), ("data_consulta", False)
    ),
    "documentos_processados": _indexes(
        ("type", False), ("processed_at", False), ("validated", False)
    ),
}

# Collections owned by infrastructure components, never by the entity store
RESERVED_COLLECTIONS = frozenset([
    "sync_queue",
    "audit_events",
    "audit_merkle_trees",
    "audit_timestamps",
    "audit_consolidated",
    "audit_meta",
    "meta",
])
