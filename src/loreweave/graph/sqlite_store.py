"""SQLite-backed world repository with mutation audit trail.

SqliteWorldRepository implements the WorldRepository protocol using stdlib
sqlite3. Every mutating operation is recorded in the ``mutations`` table,
inside the same savepoint as the write, so the history of a world can be
inspected after the fact and never disagrees with it. Relations reference
entities with ``ON DELETE CASCADE``, so deleting an entity removes its
relations in the same statement.

It also keeps the recorded chapter appearances of characters and terms,
which the mention search returns before scanning chapter text.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from loreweave.graph.errors import (
    EntityNotFoundError,
    PersistenceError,
    RelationNotFoundError,
    WorldGraphError,
)
from loreweave.graph.store import (
    check_entity_fields,
    check_relation_resolved,
    new_id,
    utcnow,
)
from loreweave.models import (
    APPEARANCE_TYPES,
    Appearance,
    Entity,
    EntityCreate,
    EntityType,
    Relation,
    RelationCreate,
    RelationKind,
    WorldGraphData,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS entities (
    id               TEXT PRIMARY KEY,
    project_id       TEXT NOT NULL,
    entity_type      TEXT NOT NULL,
    sub_type         TEXT,
    name             TEXT NOT NULL,
    description      TEXT,
    first_appearance TEXT,
    position_x       REAL NOT NULL DEFAULT 0,
    position_y       REAL NOT NULL DEFAULT 0,
    attributes       JSON,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entities_project ON entities(project_id);

CREATE TABLE IF NOT EXISTS relations (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL,
    source_id   TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    source_type TEXT NOT NULL,
    target_id   TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    target_type TEXT NOT NULL,
    relation    TEXT NOT NULL,
    attributes  JSON,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_relations_project ON relations(project_id);
CREATE INDEX IF NOT EXISTS idx_relations_source  ON relations(source_id);
CREATE INDEX IF NOT EXISTS idx_relations_target  ON relations(target_id);

CREATE TABLE IF NOT EXISTS appearances (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id   TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    entity_type TEXT NOT NULL,
    chapter_id  TEXT NOT NULL,
    position    INTEGER,
    context     TEXT,
    created_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_appearances_entity ON appearances(entity_id);

CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS mutations (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    operation TEXT NOT NULL,
    target_id TEXT NOT NULL,
    delta     JSON
);
CREATE INDEX IF NOT EXISTS idx_mutations_target ON mutations(target_id);
"""

_ENTITY_COLUMNS = (
    "id, project_id, entity_type, sub_type, name, description, first_appearance, "
    "position_x, position_y, attributes, created_at, updated_at"
)
_RELATION_COLUMNS = (
    "id, project_id, source_id, source_type, target_id, target_type, relation, "
    "attributes, created_at, updated_at"
)

SCHEMA_VERSION = 1


def _dump_attributes(value: dict[str, Any] | None) -> str | None:
    return json.dumps(value) if value else None


def _load_attributes(raw: str | None) -> dict[str, Any]:
    """Parse a stored attributes column; unreadable JSON reads as empty."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        project_id=row["project_id"],
        entity_type=row["entity_type"],
        sub_type=row["sub_type"],
        name=row["name"],
        description=row["description"],
        first_appearance=row["first_appearance"],
        position_x=row["position_x"],
        position_y=row["position_y"],
        attributes=_load_attributes(row["attributes"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_relation(row: sqlite3.Row) -> Relation:
    return Relation(
        id=row["id"],
        project_id=row["project_id"],
        source_id=row["source_id"],
        source_type=row["source_type"],
        target_id=row["target_id"],
        target_type=row["target_type"],
        relation=row["relation"],
        attributes=_load_attributes(row["attributes"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SqliteWorldRepository:
    """SQLite-backed world repository with mutation recording."""

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        _conn: sqlite3.Connection | None = None,
    ) -> None:
        """Open or create a SQLite world database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
            _conn: Pre-existing connection (for testing). If provided,
                   *db_path* is ignored.
        """
        if _conn is not None:
            self._conn = _conn
            self._db_path: str = ":memory:"
        else:
            self._db_path = str(db_path) if isinstance(db_path, Path) else db_path
            self._conn = sqlite3.connect(
                self._db_path,
                isolation_level=None,  # autocommit; transactions are explicit
            )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        if self.get_meta("schema_version") is None:
            self.set_meta("schema_version", SCHEMA_VERSION)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # -- Internals -------------------------------------------------------------

    def _record_mutation(
        self,
        operation: str,
        target_id: str,
        delta: dict[str, Any] | None = None,
    ) -> None:
        self._execute(
            operation,
            "INSERT INTO mutations (operation, target_id, delta) VALUES (?, ?, ?)",
            (operation, target_id, json.dumps(delta, default=str) if delta is not None else None),
        )

    def _execute(self, operation: str, sql: str, params: tuple[Any, ...]) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(operation, str(e)) from e

    def _write(
        self,
        operation: str,
        sql: str,
        params: tuple[Any, ...],
        target_id: str,
        delta: dict[str, Any] | None = None,
    ) -> None:
        """Run one write and its audit row in a single savepoint."""
        savepoint = f"sp_{operation}"
        self._conn.execute(f"SAVEPOINT {savepoint}")
        try:
            self._execute(operation, sql, params)
            self._record_mutation(operation, target_id, delta)
            self._conn.execute(f"RELEASE SAVEPOINT {savepoint}")
        except Exception:
            self._conn.execute(f"ROLLBACK TO {savepoint}")
            self._conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise

    def _fetch_entity(self, entity_id: str) -> Entity | None:
        row = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        return _row_to_entity(row) if row is not None else None

    def _require_entity(self, entity_id: str, context: str) -> Entity:
        entity = self._fetch_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id, context=context)
        return entity

    def _fetch_relation(self, relation_id: str) -> Relation | None:
        row = self._conn.execute(
            f"SELECT {_RELATION_COLUMNS} FROM relations WHERE id = ?", (relation_id,)
        ).fetchone()
        return _row_to_relation(row) if row is not None else None

    # -- Entities --------------------------------------------------------------

    async def list_graph(self, project_id: str) -> WorldGraphData:
        entity_rows = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE project_id = ? "
            "ORDER BY created_at, rowid",
            (project_id,),
        ).fetchall()
        relation_rows = self._conn.execute(
            f"SELECT {_RELATION_COLUMNS} FROM relations WHERE project_id = ? "
            "ORDER BY created_at, rowid",
            (project_id,),
        ).fetchall()
        return WorldGraphData(
            nodes=[_row_to_entity(r) for r in entity_rows],
            edges=[_row_to_relation(r) for r in relation_rows],
        )

    async def get_entity(self, entity_id: str) -> Entity | None:
        return self._fetch_entity(entity_id)

    async def create_entity(self, data: EntityCreate) -> Entity:
        entity_id = new_id()
        now = utcnow().isoformat()
        self._write(
            "create_entity",
            f"INSERT INTO entities ({_ENTITY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entity_id,
                data.project_id,
                data.entity_type.value,
                data.sub_type,
                data.name,
                data.description,
                data.first_appearance,
                data.position_x,
                data.position_y,
                _dump_attributes(data.attributes),
                now,
                now,
            ),
            entity_id,
            data.model_dump(mode="json"),
        )
        return self._require_entity(entity_id, "create_entity")

    async def update_entity(self, entity_id: str, fields: dict[str, Any]) -> Entity:
        check_entity_fields(fields)
        self._require_entity(entity_id, "update_entity")

        columns: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            columns.append(f"{name} = ?")
            if name == "attributes":
                params.append(_dump_attributes(value))
            elif name == "entity_type":
                params.append(str(value))
            else:
                params.append(value)
        columns.append("updated_at = ?")
        params.append(utcnow().isoformat())
        params.append(entity_id)

        self._write(
            "update_entity",
            f"UPDATE entities SET {', '.join(columns)} WHERE id = ?",
            tuple(params),
            entity_id,
            fields,
        )
        return self._require_entity(entity_id, "update_entity")

    async def update_position(self, entity_id: str, x: float, y: float) -> Entity:
        self._require_entity(entity_id, "update_position")
        self._write(
            "update_position",
            "UPDATE entities SET position_x = ?, position_y = ?, updated_at = ? WHERE id = ?",
            (float(x), float(y), utcnow().isoformat(), entity_id),
            entity_id,
            {"x": x, "y": y},
        )
        return self._require_entity(entity_id, "update_position")

    async def delete_entity(self, entity_id: str) -> None:
        self._require_entity(entity_id, "delete_entity")
        self._write(
            "delete_entity", "DELETE FROM entities WHERE id = ?", (entity_id,), entity_id
        )

    # -- Relations -------------------------------------------------------------

    async def create_relation(self, data: RelationCreate) -> Relation:
        check_relation_resolved(data)
        for endpoint in (data.source_id, data.target_id):
            self._require_entity(endpoint, "create_relation")

        relation_id = new_id()
        now = utcnow().isoformat()
        self._write(
            "create_relation",
            f"INSERT INTO relations ({_RELATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                relation_id,
                data.project_id,
                data.source_id,
                str(data.source_type),
                data.target_id,
                str(data.target_type),
                str(data.relation),
                _dump_attributes(data.attributes),
                now,
                now,
            ),
            relation_id,
            data.model_dump(mode="json"),
        )
        relation = self._fetch_relation(relation_id)
        if relation is None:
            raise RelationNotFoundError(relation_id, context="create_relation")
        return relation

    async def update_relation(self, relation_id: str, relation: RelationKind) -> Relation:
        if self._fetch_relation(relation_id) is None:
            raise RelationNotFoundError(relation_id, context="update_relation")
        kind = RelationKind(relation)
        self._write(
            "update_relation",
            "UPDATE relations SET relation = ?, updated_at = ? WHERE id = ?",
            (kind.value, utcnow().isoformat(), relation_id),
            relation_id,
            {"relation": kind.value},
        )
        updated = self._fetch_relation(relation_id)
        if updated is None:
            raise RelationNotFoundError(relation_id, context="update_relation")
        return updated

    async def delete_relation(self, relation_id: str) -> None:
        if self._fetch_relation(relation_id) is None:
            raise RelationNotFoundError(relation_id, context="delete_relation")
        self._write(
            "delete_relation", "DELETE FROM relations WHERE id = ?", (relation_id,), relation_id
        )

    # -- Appearances -----------------------------------------------------------

    async def record_appearance(
        self,
        entity_id: str,
        chapter_id: str,
        *,
        position: int | None = None,
        context: str | None = None,
    ) -> Appearance:
        """Record that a character or term appears in *chapter_id*."""
        entity = self._require_entity(entity_id, "record_appearance")
        if entity.entity_type not in APPEARANCE_TYPES:
            raise WorldGraphError(
                f"Appearances are recorded for characters and terms, "
                f"not {entity.entity_type.value} '{entity.name}'"
            )
        now = utcnow()
        self._write(
            "record_appearance",
            "INSERT INTO appearances "
            "(entity_id, entity_type, chapter_id, position, context, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (entity_id, entity.entity_type.value, chapter_id, position, context, now.isoformat()),
            entity_id,
            {"chapter_id": chapter_id, "position": position},
        )
        return Appearance(
            entity_id=entity_id,
            entity_type=entity.entity_type,
            chapter_id=chapter_id,
            position=position,
            context=context,
            created_at=now,
        )

    async def list_appearances(
        self,
        entity_type: EntityType,
        entity_id: str,
        limit: int,
    ) -> list[Appearance]:
        rows = self._conn.execute(
            "SELECT entity_id, entity_type, chapter_id, position, context, created_at "
            "FROM appearances WHERE entity_id = ? AND entity_type = ? "
            "ORDER BY created_at, id LIMIT ?",
            (entity_id, str(entity_type), limit),
        ).fetchall()
        return [
            Appearance(
                entity_id=r["entity_id"],
                entity_type=r["entity_type"],
                chapter_id=r["chapter_id"],
                position=r["position"],
                context=r["context"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    # -- Meta ------------------------------------------------------------------

    def get_meta(self, key: str) -> Any:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        value = row["value"]
        # Databases created with a JSON-typed column hold numbers natively
        if not isinstance(value, str):
            return value
        return json.loads(value)

    def set_meta(self, key: str, value: Any) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )

    # -- Audit -----------------------------------------------------------------

    def get_mutations(self, target_id: str | None = None) -> list[dict[str, Any]]:
        """Return recorded mutations, oldest first, optionally for one record."""
        if target_id is None:
            rows = self._conn.execute(
                "SELECT operation, target_id, delta, timestamp FROM mutations ORDER BY id"
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT operation, target_id, delta, timestamp FROM mutations "
                "WHERE target_id = ? ORDER BY id",
                (target_id,),
            ).fetchall()
        return [
            {
                "operation": r["operation"],
                "target_id": r["target_id"],
                "delta": json.loads(r["delta"]) if r["delta"] else None,
                "timestamp": r["timestamp"],
            }
            for r in rows
        ]
