"""World repository protocol and in-memory implementation.

The WorldRepository protocol is the persistence collaborator the graph store
talks to. Implementations handle raw CRUD scoped by project and raise
:class:`~loreweave.graph.errors.PersistenceError` subclasses on failure; the
graph store owns validation, compatibility checks and in-memory state.

InMemoryWorldRepository keeps everything in dicts and is what tests and
throwaway sessions use. SqliteWorldRepository persists to a ``.db`` file.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from loreweave.graph.errors import EntityNotFoundError, PersistenceError, RelationNotFoundError
from loreweave.models import (
    Entity,
    EntityCreate,
    Relation,
    RelationCreate,
    RelationKind,
    WorldGraphData,
)

# Fields update_entity may replace.
UPDATABLE_ENTITY_FIELDS = frozenset(
    {"name", "description", "entity_type", "sub_type", "first_appearance", "attributes"}
)


def new_id() -> str:
    """Return a fresh record id."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


@runtime_checkable
class WorldRepository(Protocol):
    """Persistence protocol for world-graph records.

    Every method is a coroutine so that implementations may talk to remote
    storage. Failures raise PersistenceError (or a subclass); no method
    returns a partial result.
    """

    async def list_graph(self, project_id: str) -> WorldGraphData:
        """Return every entity and relation of *project_id*."""
        ...

    async def get_entity(self, entity_id: str) -> Entity | None:
        """Return an entity by id, or None if absent."""
        ...

    async def create_entity(self, data: EntityCreate) -> Entity:
        """Persist a new entity and return it with its assigned id."""
        ...

    async def update_entity(self, entity_id: str, fields: dict[str, Any]) -> Entity:
        """Replace the given fields of an entity and return the stored record."""
        ...

    async def update_position(self, entity_id: str, x: float, y: float) -> Entity:
        """Write ``positionX``/``positionY`` and return the stored record."""
        ...

    async def delete_entity(self, entity_id: str) -> None:
        """Delete an entity and every relation that references it."""
        ...

    async def create_relation(self, data: RelationCreate) -> Relation:
        """Persist a fully resolved relation and return it with its id."""
        ...

    async def update_relation(self, relation_id: str, relation: RelationKind) -> Relation:
        """Change a relation's kind and return the stored record."""
        ...

    async def delete_relation(self, relation_id: str) -> None:
        """Delete a relation by id."""
        ...


def check_entity_fields(fields: dict[str, Any]) -> None:
    """Reject update fields outside :data:`UPDATABLE_ENTITY_FIELDS`."""
    unknown = set(fields) - UPDATABLE_ENTITY_FIELDS
    if unknown:
        raise PersistenceError("update_entity", f"unknown fields: {sorted(unknown)}")


def check_relation_resolved(data: RelationCreate) -> None:
    """Reject relation input that the graph store has not resolved."""
    missing = [
        name
        for name in ("project_id", "relation", "source_type", "target_type")
        if getattr(data, name) is None
    ]
    if missing:
        raise PersistenceError("create_relation", f"unresolved fields: {missing}")


class InMemoryWorldRepository:
    """Dict-backed world repository.

    Records are copied on the way in and out so callers never share mutable
    state with the repository.
    """

    def __init__(self, data: WorldGraphData | None = None) -> None:
        self._entities: dict[str, Entity] = {}
        self._relations: dict[str, Relation] = {}
        if data is not None:
            for node in data.nodes:
                self._entities[node.id] = node.model_copy(deep=True)
            for edge in data.edges:
                self._relations[edge.id] = edge.model_copy(deep=True)

    # -- Entities --------------------------------------------------------------

    async def list_graph(self, project_id: str) -> WorldGraphData:
        return WorldGraphData(
            nodes=[
                e.model_copy(deep=True)
                for e in self._entities.values()
                if e.project_id == project_id
            ],
            edges=[
                r.model_copy(deep=True)
                for r in self._relations.values()
                if r.project_id == project_id
            ],
        )

    async def get_entity(self, entity_id: str) -> Entity | None:
        entity = self._entities.get(entity_id)
        return entity.model_copy(deep=True) if entity is not None else None

    async def create_entity(self, data: EntityCreate) -> Entity:
        now = utcnow()
        entity = Entity(
            id=new_id(),
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self._entities[entity.id] = entity
        return entity.model_copy(deep=True)

    def _require_entity(self, entity_id: str, context: str) -> Entity:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(
                entity_id,
                available=list(self._entities),
                context=context,
            )
        return entity

    async def update_entity(self, entity_id: str, fields: dict[str, Any]) -> Entity:
        check_entity_fields(fields)
        current = self._require_entity(entity_id, "update_entity")
        updated = Entity.model_validate(
            {**current.model_dump(), **fields, "updated_at": utcnow()}
        )
        self._entities[entity_id] = updated
        return updated.model_copy(deep=True)

    async def update_position(self, entity_id: str, x: float, y: float) -> Entity:
        current = self._require_entity(entity_id, "update_position")
        updated = current.model_copy(
            update={"position_x": float(x), "position_y": float(y), "updated_at": utcnow()}
        )
        self._entities[entity_id] = updated
        return updated.model_copy(deep=True)

    async def delete_entity(self, entity_id: str) -> None:
        self._require_entity(entity_id, "delete_entity")
        del self._entities[entity_id]
        self._relations = {
            rid: r for rid, r in self._relations.items() if not r.touches(entity_id)
        }

    # -- Relations -------------------------------------------------------------

    async def create_relation(self, data: RelationCreate) -> Relation:
        check_relation_resolved(data)
        for endpoint in (data.source_id, data.target_id):
            self._require_entity(endpoint, "create_relation")
        now = utcnow()
        relation = Relation(
            id=new_id(),
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self._relations[relation.id] = relation
        return relation.model_copy(deep=True)

    async def update_relation(self, relation_id: str, relation: RelationKind) -> Relation:
        current = self._relations.get(relation_id)
        if current is None:
            raise RelationNotFoundError(relation_id, context="update_relation")
        updated = current.model_copy(
            update={"relation": RelationKind(relation), "updated_at": utcnow()}
        )
        self._relations[relation_id] = updated
        return updated.model_copy(deep=True)

    async def delete_relation(self, relation_id: str) -> None:
        if relation_id not in self._relations:
            raise RelationNotFoundError(relation_id, context="delete_relation")
        del self._relations[relation_id]

    # -- Introspection ---------------------------------------------------------

    def entity_count(self) -> int:
        return len(self._entities)

    def relation_count(self) -> int:
        return len(self._relations)
