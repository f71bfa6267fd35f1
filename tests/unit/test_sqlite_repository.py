"""Tests for SqliteWorldRepository."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from loreweave.graph import (
    EntityNotFoundError,
    PersistenceError,
    RelationNotFoundError,
    SqliteWorldRepository,
    WorldGraphError,
    WorldRepository,
)
from loreweave.models import EntityCreate, EntityType, RelationCreate, RelationKind
from tests.fixtures.world_fixtures import PROJECT_ID

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture
def db() -> Iterator[SqliteWorldRepository]:
    repo = SqliteWorldRepository()
    yield repo
    repo.close()


async def _add(
    repo: SqliteWorldRepository,
    name: str,
    entity_type: EntityType = EntityType.CHARACTER,
    **fields: object,
) -> str:
    created = await repo.create_entity(
        EntityCreate(project_id=PROJECT_ID, entity_type=entity_type, name=name, **fields)
    )
    return created.id


def _relation(source_id: str, target_id: str) -> RelationCreate:
    return RelationCreate(
        project_id=PROJECT_ID,
        source_id=source_id,
        target_id=target_id,
        relation=RelationKind.LOCATED_IN,
        source_type=EntityType.CHARACTER,
        target_type=EntityType.PLACE,
    )


class TestSqliteRepository:
    """CRUD against an in-memory database."""

    def test_is_world_repository(self, db: SqliteWorldRepository) -> None:
        """The SQLite repository satisfies the protocol."""
        assert isinstance(db, WorldRepository)

    def test_schema_version_recorded(self, db: SqliteWorldRepository) -> None:
        """A fresh database records its schema version."""
        assert db.get_meta("schema_version") == 1

    @pytest.mark.asyncio
    async def test_entity_round_trip(self, db: SqliteWorldRepository) -> None:
        """Entities read back with attributes and positions."""
        entity_id = await _add(
            db,
            "Old Keep",
            EntityType.PLACE,
            sub_type="Fortress",
            position_x=10.0,
            position_y=20.0,
            attributes={"tags": ["ruin"]},
        )

        entity = await db.get_entity(entity_id)

        assert entity is not None
        assert entity.entity_type is EntityType.PLACE
        assert entity.sub_type == "Fortress"
        assert (entity.position_x, entity.position_y) == (10.0, 20.0)
        assert entity.attributes == {"tags": ["ruin"]}

    @pytest.mark.asyncio
    async def test_list_graph_in_creation_order(self, db: SqliteWorldRepository) -> None:
        """Nodes come back in insertion order."""
        ids = [await _add(db, name) for name in ("A", "B", "C")]

        graph = await db.list_graph(PROJECT_ID)

        assert [n.id for n in graph.nodes] == ids
        assert (await db.list_graph("other")).nodes == []

    @pytest.mark.asyncio
    async def test_update_entity_fields(self, db: SqliteWorldRepository) -> None:
        """update_entity writes columns including type and attributes."""
        entity_id = await _add(db, "Mira")

        updated = await db.update_entity(
            entity_id,
            {"name": "Mira Vell", "entity_type": EntityType.FACTION, "attributes": {"era": "Late"}},
        )

        assert updated.name == "Mira Vell"
        assert updated.entity_type is EntityType.FACTION
        assert updated.attributes == {"era": "Late"}

    @pytest.mark.asyncio
    async def test_update_unknown_field_rejected(self, db: SqliteWorldRepository) -> None:
        """Column names outside the allowed set never reach SQL."""
        entity_id = await _add(db, "Mira")
        with pytest.raises(PersistenceError):
            await db.update_entity(entity_id, {"id = 'x'; --": 1})

    @pytest.mark.asyncio
    async def test_update_position(self, db: SqliteWorldRepository) -> None:
        """update_position writes the coordinate columns."""
        entity_id = await _add(db, "Keep", EntityType.PLACE)
        moved = await db.update_position(entity_id, 42, -7)
        assert (moved.position_x, moved.position_y) == (42.0, -7.0)

    @pytest.mark.asyncio
    async def test_delete_entity_cascades(self, db: SqliteWorldRepository) -> None:
        """Relations referencing a deleted entity are removed with it."""
        a = await _add(db, "A")
        b = await _add(db, "B")
        keep = await _add(db, "Keep", EntityType.PLACE)
        await db.create_relation(_relation(a, keep))
        kept = await db.create_relation(_relation(b, keep))

        await db.delete_entity(a)

        graph = await db.list_graph(PROJECT_ID)
        assert [e.id for e in graph.edges] == [kept.id]

    @pytest.mark.asyncio
    async def test_missing_records(self, db: SqliteWorldRepository) -> None:
        """Unknown ids raise not-found errors."""
        with pytest.raises(EntityNotFoundError):
            await db.delete_entity("ghost")
        with pytest.raises(RelationNotFoundError):
            await db.update_relation("ghost", RelationKind.CAUSES)

    @pytest.mark.asyncio
    async def test_relation_update_and_delete(self, db: SqliteWorldRepository) -> None:
        """Relations can change kind and be deleted."""
        a = await _add(db, "A")
        keep = await _add(db, "Keep", EntityType.PLACE)
        relation = await db.create_relation(_relation(a, keep))

        updated = await db.update_relation(relation.id, RelationKind.CONTROLS)
        assert updated.relation is RelationKind.CONTROLS

        await db.delete_relation(relation.id)
        assert (await db.list_graph(PROJECT_ID)).edges == []

    @pytest.mark.asyncio
    async def test_mutations_recorded(self, db: SqliteWorldRepository) -> None:
        """Each write lands in the audit table."""
        entity_id = await _add(db, "A")
        await db.update_entity(entity_id, {"description": "First"})

        mutations = db.get_mutations(entity_id)

        assert [m["operation"] for m in mutations] == ["create_entity", "update_entity"]
        assert mutations[1]["delta"] == {"description": "First"}

    @pytest.mark.asyncio
    async def test_persists_to_file(self, tmp_path: Path) -> None:
        """Records survive closing and reopening the database file."""
        path = tmp_path / "world.db"
        repo = SqliteWorldRepository(path)
        entity_id = await _add(repo, "Persistent")
        repo.set_meta("project_id", PROJECT_ID)
        repo.close()

        reopened = SqliteWorldRepository(path)
        try:
            assert reopened.get_meta("project_id") == PROJECT_ID
            entity = await reopened.get_entity(entity_id)
            assert entity is not None
            assert entity.name == "Persistent"
        finally:
            reopened.close()

    def test_reopen_reads_schema_version(self, tmp_path: Path) -> None:
        """Reopening an existing file reads numeric meta values back."""
        path = tmp_path / "world.db"
        SqliteWorldRepository(path).close()

        reopened = SqliteWorldRepository(path)
        try:
            assert reopened.get_meta("schema_version") == 1
        finally:
            reopened.close()

    def test_meta_keeps_digit_strings(self, db: SqliteWorldRepository) -> None:
        """A string of digits reads back as a string."""
        db.set_meta("project_id", "12345")
        assert db.get_meta("project_id") == "12345"


class TestAtomicWrites:
    """A write and its audit row land together or not at all."""

    @staticmethod
    def _break_audit(db: SqliteWorldRepository, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(operation: str, target_id: str, delta: object = None) -> None:
            raise PersistenceError(operation, "audit insert failed")

        monkeypatch.setattr(db, "_record_mutation", fail)

    @pytest.mark.asyncio
    async def test_failed_audit_rolls_back_create(
        self, db: SqliteWorldRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """No entity is stored when its mutation record cannot be written."""
        self._break_audit(db, monkeypatch)

        with pytest.raises(PersistenceError):
            await _add(db, "Ghost")

        assert (await db.list_graph(PROJECT_ID)).nodes == []

    @pytest.mark.asyncio
    async def test_failed_audit_rolls_back_update(
        self, db: SqliteWorldRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A failed update leaves the stored row unchanged."""
        entity_id = await _add(db, "Mira")
        self._break_audit(db, monkeypatch)

        with pytest.raises(PersistenceError):
            await db.update_entity(entity_id, {"name": "Mira Vell"})

        entity = await db.get_entity(entity_id)
        assert entity is not None
        assert entity.name == "Mira"

    @pytest.mark.asyncio
    async def test_failed_audit_rolls_back_delete(
        self, db: SqliteWorldRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A failed delete keeps the entity and its relations."""
        a = await _add(db, "A")
        keep = await _add(db, "Keep", EntityType.PLACE)
        await db.create_relation(_relation(a, keep))
        self._break_audit(db, monkeypatch)

        with pytest.raises(PersistenceError):
            await db.delete_entity(a)

        graph = await db.list_graph(PROJECT_ID)
        assert len(graph.nodes) == 2
        assert len(graph.edges) == 1

    @pytest.mark.asyncio
    async def test_later_writes_still_commit(
        self, db: SqliteWorldRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The connection is usable after a rolled-back write."""
        self._break_audit(db, monkeypatch)
        with pytest.raises(PersistenceError):
            await _add(db, "Ghost")
        monkeypatch.undo()

        entity_id = await _add(db, "Real")

        assert [m["operation"] for m in db.get_mutations(entity_id)] == ["create_entity"]


class TestAppearances:
    """Recorded chapter appearances."""

    @pytest.mark.asyncio
    async def test_record_and_list_oldest_first(self, db: SqliteWorldRepository) -> None:
        """Appearances come back in recording order, limited."""
        mira = await _add(db, "Mira")
        await db.record_appearance(mira, "ch2", position=12, context="Mira smiled")
        await db.record_appearance(mira, "ch1")
        await db.record_appearance(mira, "ch3")

        rows = await db.list_appearances(EntityType.CHARACTER, mira, 2)

        assert [(r.chapter_id, r.position, r.context) for r in rows] == [
            ("ch2", 12, "Mira smiled"),
            ("ch1", None, None),
        ]
        assert [m["operation"] for m in db.get_mutations(mira)][-1] == "record_appearance"

    @pytest.mark.asyncio
    async def test_keyed_by_entity_type(self, db: SqliteWorldRepository) -> None:
        """A term's appearances are not listed under another type."""
        oath = await _add(db, "Blood Oath", EntityType.TERM)
        await db.record_appearance(oath, "ch1")

        assert len(await db.list_appearances(EntityType.TERM, oath, 10)) == 1
        assert await db.list_appearances(EntityType.CHARACTER, oath, 10) == []

    @pytest.mark.asyncio
    async def test_only_characters_and_terms(self, db: SqliteWorldRepository) -> None:
        """Other entity types cannot record appearances."""
        keep = await _add(db, "Keep", EntityType.PLACE)

        with pytest.raises(WorldGraphError, match="characters and terms"):
            await db.record_appearance(keep, "ch1")
        with pytest.raises(EntityNotFoundError):
            await db.record_appearance("ghost", "ch1")

    @pytest.mark.asyncio
    async def test_removed_with_entity(self, db: SqliteWorldRepository) -> None:
        """Deleting the entity removes its appearances."""
        mira = await _add(db, "Mira")
        await db.record_appearance(mira, "ch1")

        await db.delete_entity(mira)

        assert await db.list_appearances(EntityType.CHARACTER, mira, 10) == []
