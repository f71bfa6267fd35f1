"""Tests for InMemoryWorldRepository."""

from __future__ import annotations

import pytest

from loreweave.graph import (
    EntityNotFoundError,
    InMemoryWorldRepository,
    PersistenceError,
    RelationNotFoundError,
    WorldRepository,
)
from loreweave.models import EntityCreate, EntityType, RelationCreate, RelationKind, WorldGraphData
from tests.fixtures.world_fixtures import PROJECT_ID, make_entity


class TestProtocol:
    """Protocol conformance."""

    def test_is_world_repository(self, repository: InMemoryWorldRepository) -> None:
        """The in-memory repository satisfies the runtime-checkable protocol."""
        assert isinstance(repository, WorldRepository)


class TestEntities:
    """Entity CRUD."""

    @pytest.mark.asyncio
    async def test_list_graph_scoped_by_project(self, sample_graph: WorldGraphData) -> None:
        """Only the requested project's records are returned."""
        other = make_entity("stranger", project_id="proj-2")
        repo = InMemoryWorldRepository(
            WorldGraphData(nodes=[*sample_graph.nodes, other], edges=sample_graph.edges)
        )

        graph = await repo.list_graph(PROJECT_ID)

        assert {n.id for n in graph.nodes} == {"alice", "bram", "guild", "keep"}
        assert len(graph.edges) == 3
        assert [n.id for n in (await repo.list_graph("proj-2")).nodes] == ["stranger"]

    @pytest.mark.asyncio
    async def test_create_assigns_id_and_timestamps(
        self, repository: InMemoryWorldRepository
    ) -> None:
        """Created entities get an id and timestamps."""
        created = await repository.create_entity(
            EntityCreate(project_id=PROJECT_ID, entity_type=EntityType.ITEM, name="Lamp")
        )

        assert created.id
        assert created.created_at is not None
        assert repository.entity_count() == 5

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, repository: InMemoryWorldRepository) -> None:
        """Mutating a returned entity does not leak into storage."""
        entity = await repository.get_entity("alice")
        assert entity is not None
        entity.attributes["tags"] = ["changed"]

        again = await repository.get_entity("alice")
        assert again is not None
        assert again.attributes == {}

    @pytest.mark.asyncio
    async def test_update_replaces_fields(self, repository: InMemoryWorldRepository) -> None:
        """update_entity replaces the given fields only."""
        updated = await repository.update_entity("alice", {"name": "Alys", "sub_type": "Hero"})

        assert updated.name == "Alys"
        assert updated.sub_type == "Hero"
        assert updated.entity_type is EntityType.CHARACTER

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_field(
        self, repository: InMemoryWorldRepository
    ) -> None:
        """Fields outside the updatable set raise PersistenceError."""
        with pytest.raises(PersistenceError, match="unknown fields"):
            await repository.update_entity("alice", {"project_id": "proj-2"})

    @pytest.mark.asyncio
    async def test_update_missing_entity(self, repository: InMemoryWorldRepository) -> None:
        """Updating an unknown id raises EntityNotFoundError."""
        with pytest.raises(EntityNotFoundError):
            await repository.update_entity("ghost", {"name": "Boo"})

    @pytest.mark.asyncio
    async def test_update_position(self, repository: InMemoryWorldRepository) -> None:
        """update_position writes the columns."""
        moved = await repository.update_position("keep", 5, 6)
        assert (moved.position_x, moved.position_y) == (5.0, 6.0)

    @pytest.mark.asyncio
    async def test_delete_cascades_relations(self, repository: InMemoryWorldRepository) -> None:
        """Deleting an entity removes exactly the relations touching it."""
        await repository.delete_entity("alice")

        graph = await repository.list_graph(PROJECT_ID)
        assert [e.id for e in graph.edges] == ["r3"]
        assert repository.relation_count() == 1


class TestRelations:
    """Relation CRUD."""

    @pytest.mark.asyncio
    async def test_create_requires_resolved_input(
        self, repository: InMemoryWorldRepository
    ) -> None:
        """The repository refuses relations the store has not resolved."""
        with pytest.raises(PersistenceError, match="unresolved"):
            await repository.create_relation(RelationCreate(source_id="alice", target_id="keep"))

    @pytest.mark.asyncio
    async def test_create_rejects_missing_endpoint(
        self, repository: InMemoryWorldRepository
    ) -> None:
        """Both endpoints must exist."""
        with pytest.raises(EntityNotFoundError):
            await repository.create_relation(
                RelationCreate(
                    project_id=PROJECT_ID,
                    source_id="alice",
                    target_id="ghost",
                    relation=RelationKind.ENEMY_OF,
                    source_type=EntityType.CHARACTER,
                    target_type=EntityType.CHARACTER,
                )
            )

    @pytest.mark.asyncio
    async def test_update_and_delete(self, repository: InMemoryWorldRepository) -> None:
        """Relations can change kind and be deleted."""
        updated = await repository.update_relation("r1", RelationKind.BELONGS_TO)
        assert updated.relation is RelationKind.BELONGS_TO

        await repository.delete_relation("r1")
        assert repository.relation_count() == 2

    @pytest.mark.asyncio
    async def test_missing_relation(self, repository: InMemoryWorldRepository) -> None:
        """Unknown relation ids raise RelationNotFoundError."""
        with pytest.raises(RelationNotFoundError):
            await repository.delete_relation("nope")
