"""Authoritative in-memory world graph for the active project.

WorldGraphStore is the single mutation point for entities and relations. It
validates input, applies the compatibility rules, persists through a
:class:`~loreweave.graph.store.WorldRepository` and only then updates its own
state, so a failed persistence call leaves memory exactly as it was.

Expected failures (bad input, incompatible pair, unknown id, repository error)
are logged and reported as ``None``/``False``; callers decide how to surface
them.

Consumers hold a reference to the store and either ``subscribe`` to
:class:`GraphChange` notifications or poll :attr:`WorldGraphStore.version`.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from loreweave.config import GraphSettings
from loreweave.graph.attributes import merge_attributes, with_graph_position
from loreweave.graph.errors import (
    EntityNotFoundError,
    IncompatibleRelationError,
    PersistenceError,
    ProjectMismatchError,
    RelationNotFoundError,
    WorldGraphError,
)
from loreweave.graph.filtering import filtered_graph, group_by_type
from loreweave.graph.layout import layout_graph, position_write_back
from loreweave.graph.rules import compatible_relation
from loreweave.models import (
    Entity,
    EntityCreate,
    EntityPatch,
    EntityPositionUpdate,
    EntityType,
    FilterState,
    Relation,
    RelationCreate,
    RelationKind,
    ViewMode,
    WorldGraphData,
    is_coordinate_backed,
)
from loreweave.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from loreweave.graph.layout import Position
    from loreweave.graph.store import WorldRepository

log = get_logger(__name__)

# Share of Event nodes at which the event-chain view is suggested.
EVENT_CHAIN_THRESHOLD = 0.4

_DIRECT_FIELDS = ("name", "description", "entity_type", "sub_type", "first_appearance")


class Confirmer(Protocol):
    """Supplies yes/no answers for destructive actions."""

    async def confirm(self, message: str) -> bool: ...


class AutoConfirm:
    """Confirmer that always agrees (the caller has already asked)."""

    async def confirm(self, message: str) -> bool:
        return True


@dataclass(frozen=True)
class GraphChange:
    """Notification sent to subscribers after the store changes.

    Attributes:
        kind: What happened (``loaded``, ``entity_created``, ``selection`` ...).
        ids: Ids of the records involved, if any.
    """

    kind: str
    ids: tuple[str, ...] = ()


@dataclass
class PendingPosition:
    """An optimistic position awaiting persistence confirmation."""

    x: float
    y: float
    started_at: float
    token: object = field(default_factory=object)


class WorldGraphStore:
    """In-memory world graph for one active project.

    Attributes:
        active_project_id: Project whose graph is loaded.
        is_loading: True while a fetch is in flight.
        error: Message of the last failed load, if any.
        last_error: Why the most recent mutation failed, or None if it succeeded.
        selected_node_id: Selected entity id (exclusive with selected_edge_id).
        selected_edge_id: Selected relation id.
        filter: Ephemeral view filter.
        view_mode: Canvas arrangement currently shown.
        suggested_view_mode: View the rendering layer may offer after load.
        version: Incremented on every change notification.
    """

    def __init__(
        self,
        repository: WorldRepository,
        *,
        confirmer: Confirmer | None = None,
        settings: GraphSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository
        self._confirmer: Confirmer = confirmer or AutoConfirm()
        self._settings = settings or GraphSettings()
        self._clock = clock

        self._nodes: list[Entity] = []
        self._edges: list[Relation] = []
        self._pending: dict[str, PendingPosition] = {}
        self._listeners: list[Callable[[GraphChange], None]] = []
        self._record_locks: dict[str, asyncio.Lock] = {}

        self._requested_project_id: str | None = None
        self._load_task: asyncio.Future[bool] | None = None
        self._suggestion_dismissed_for: str | None = None

        self.active_project_id: str | None = None
        self.is_loading = False
        self.error: str | None = None
        self.last_error: WorldGraphError | None = None
        self.selected_node_id: str | None = None
        self.selected_edge_id: str | None = None
        self.filter = FilterState()
        self.view_mode = ViewMode.STANDARD
        self.suggested_view_mode: ViewMode | None = None
        self.version = 0

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Callable[[GraphChange], None]) -> Callable[[], None]:
        """Register *listener* for change notifications.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, *ids: str) -> None:
        self.version += 1
        change = GraphChange(kind, tuple(ids))
        for listener in list(self._listeners):
            listener(change)

    def _fail(self, error: Exception, operation: str, event: str, **fields: Any) -> None:
        if not isinstance(error, WorldGraphError):
            error = PersistenceError(operation, str(error))
        self.last_error = error
        log.warning(event, error=str(error), **fields)

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def nodes(self) -> list[Entity]:
        """Current nodes with pending positions overlaid."""
        if not self._pending:
            return list(self._nodes)
        return [self._with_pending(n) for n in self._nodes]

    @property
    def committed_nodes(self) -> list[Entity]:
        """Current nodes as confirmed by the repository."""
        return list(self._nodes)

    @property
    def edges(self) -> list[Relation]:
        return list(self._edges)

    @property
    def graph(self) -> WorldGraphData:
        return WorldGraphData(nodes=self.nodes, edges=self.edges)

    @property
    def pending_ids(self) -> set[str]:
        """Ids of entities with an unconfirmed position."""
        return set(self._pending)

    def get_entity(self, entity_id: str) -> Entity | None:
        """Return the entity (with any pending position), or None."""
        for node in self._nodes:
            if node.id == entity_id:
                return self._with_pending(node)
        return None

    def get_relation(self, relation_id: str) -> Relation | None:
        for edge in self._edges:
            if edge.id == relation_id:
                return edge
        return None

    def positions(self) -> dict[str, Position]:
        """Resolve render positions for every node in load order."""
        return layout_graph(self.nodes)

    def stale_relations(self) -> list[Relation]:
        """Relations whose frozen endpoint types no longer match the entities.

        Such relations are kept as they are; this is how they get flagged.
        """
        types = {n.id: n.entity_type for n in self._nodes}
        return [
            e
            for e in self._edges
            if types.get(e.source_id, e.source_type) != e.source_type
            or types.get(e.target_id, e.target_type) != e.target_type
        ]

    def _find_node(self, entity_id: str) -> Entity | None:
        for node in self._nodes:
            if node.id == entity_id:
                return node
        return None

    def _entity_missing(self, entity_id: str, context: str) -> EntityNotFoundError:
        return EntityNotFoundError(
            entity_id,
            available=[n.name for n in self._nodes],
            context=context,
        )

    def _with_pending(self, node: Entity) -> Entity:
        pending = self._pending.get(node.id)
        if pending is None:
            return node
        if is_coordinate_backed(node.entity_type):
            return node.model_copy(update={"position_x": pending.x, "position_y": pending.y})
        return node.model_copy(
            update={"attributes": with_graph_position(node.attributes, pending.x, pending.y)}
        )

    def _replace_node(self, updated: Entity) -> None:
        self._nodes = [updated if n.id == updated.id else n for n in self._nodes]

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    def set_filter(self, **changes: Any) -> FilterState:
        """Update the view filter with the given fields and return it."""
        merged = {**self.filter.model_dump(), **changes}
        self.filter = FilterState.model_validate(merged)
        self._notify("filter")
        return self.filter

    def reset_filter(self) -> None:
        self.filter = FilterState()
        self._notify("filter")

    def visible_graph(self) -> WorldGraphData:
        """The current graph under the active filter."""
        return filtered_graph(self.graph, self.filter)

    def grouped_nodes(self) -> dict[EntityType, list[Entity]]:
        """Visible nodes bucketed by type for a library/sidebar view."""
        return group_by_type(self.visible_graph().nodes, self.filter)

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def select_node(self, entity_id: str | None) -> None:
        """Select a node (or clear with None); always clears edge selection."""
        changed = (self.selected_node_id, self.selected_edge_id) != (entity_id, None)
        self.selected_node_id = entity_id
        self.selected_edge_id = None
        if changed:
            self._notify("selection", *(i for i in (entity_id,) if i))

    def select_edge(self, relation_id: str | None) -> None:
        """Select an edge (or clear with None); always clears node selection."""
        changed = (self.selected_node_id, self.selected_edge_id) != (None, relation_id)
        self.selected_edge_id = relation_id
        self.selected_node_id = None
        if changed:
            self._notify("selection", *(i for i in (relation_id,) if i))

    def clear_selection(self) -> None:
        """Background click: nothing selected."""
        self.select_node(None)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load_graph(self, project_id: str) -> bool:
        """Replace the in-memory graph with *project_id*'s records.

        A second call for the project that is already loaded or loading does
        not fetch again; concurrent callers share the in-flight fetch.

        Returns:
            True if the project's graph is loaded.
        """
        if project_id == self._requested_project_id:
            if self._load_task is not None:
                return await asyncio.shield(self._load_task)
            return self.active_project_id == project_id

        self._requested_project_id = project_id
        self.is_loading = True
        task = asyncio.ensure_future(self._fetch(project_id))
        self._load_task = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._load_task is task:
                self._load_task = None

    async def reload(self) -> bool:
        """Refetch the active project's graph."""
        project_id = self._requested_project_id or self.active_project_id
        if project_id is None:
            return False
        if self._load_task is not None:
            return await asyncio.shield(self._load_task)
        self._requested_project_id = None
        return await self.load_graph(project_id)

    async def _fetch(self, project_id: str) -> bool:
        self.error = None
        log.debug("graph_load_started", project_id=project_id)
        try:
            data = await self._repository.list_graph(project_id)
        except Exception as e:
            if self._requested_project_id == project_id:
                self._requested_project_id = None
                self.is_loading = False
                self.error = str(e)
                self._notify("load_failed")
            log.warning("graph_load_failed", project_id=project_id, error=str(e))
            return False

        if self._requested_project_id != project_id:
            log.debug("graph_load_discarded", project_id=project_id)
            return False

        self.active_project_id = project_id
        self._nodes = list(data.nodes)
        self._edges = list(data.edges)
        self._pending.clear()
        self.selected_node_id = None
        self.selected_edge_id = None
        self.is_loading = False
        if self._suggestion_dismissed_for != project_id:
            self._suggestion_dismissed_for = None
            self.suggested_view_mode = self._suggest_view_mode()

        log.info(
            "graph_loaded",
            project_id=project_id,
            nodes=len(self._nodes),
            edges=len(self._edges),
        )
        self._notify("loaded")
        return True

    def _suggest_view_mode(self) -> ViewMode | None:
        # Only offered to users still on the default arrangement
        if self.view_mode is not ViewMode.STANDARD:
            return None
        total = len(self._nodes)
        if total == 0:
            return None
        events = sum(1 for n in self._nodes if n.entity_type is EntityType.EVENT)
        return ViewMode.EVENT_CHAIN if events / total >= EVENT_CHAIN_THRESHOLD else None

    def set_view_mode(self, mode: ViewMode | str) -> None:
        """Switch the canvas arrangement; any pending suggestion is settled."""
        self.view_mode = ViewMode(mode)
        self.suggested_view_mode = None
        self._notify("view_mode")

    def dismiss_suggestion(self) -> None:
        """Drop the suggestion; reloads of the same project do not bring it back."""
        self.suggested_view_mode = None
        self._suggestion_dismissed_for = self.active_project_id

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    async def create_entity(
        self,
        project_id: str,
        entity_type: EntityType | str,
        name: str,
        *,
        sub_type: str | None = None,
        position: tuple[float, float] | None = None,
        description: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> Entity | None:
        """Create an entity, typically at the canvas point under the pointer.

        Args:
            project_id: Owning project.
            entity_type: One of :class:`EntityType` (or its string value).
            name: Display name.
            sub_type: Optional refinement.
            position: Canvas ``(x, y)``; stored in columns or ``graphPosition``
                depending on the type.
            description: Optional free text.
            attributes: Optional initial attributes.

        Returns:
            The created entity, or None if validation or persistence failed.
        """
        self.last_error = None
        try:
            draft = EntityCreate(
                project_id=project_id,
                entity_type=entity_type,
                sub_type=sub_type,
                name=name,
                description=description,
                attributes=dict(attributes or {}),
            )
        except ValidationError as e:
            self._fail(
                WorldGraphError(f"Invalid entity: {e.error_count()} validation error(s)"),
                "create_entity",
                "entity_create_invalid",
                detail=str(e),
            )
            return None

        if position is not None:
            x, y = round(position[0]), round(position[1])
            if is_coordinate_backed(draft.entity_type):
                draft = draft.model_copy(update={"position_x": float(x), "position_y": float(y)})
            else:
                draft = draft.model_copy(
                    update={"attributes": with_graph_position(draft.attributes, x, y)}
                )

        try:
            created = await self._repository.create_entity(draft)
        except Exception as e:
            self._fail(e, "create_entity", "entity_create_failed", name=draft.name)
            return None

        if self.active_project_id in (None, created.project_id):
            self._nodes = [*self._nodes, created]
        log.info(
            "entity_created",
            entity_id=created.id,
            entity_type=created.entity_type.value,
            project_id=created.project_id,
        )
        self._notify("entity_created", created.id)
        return created

    async def update_entity(self, patch: EntityPatch | dict[str, Any]) -> Entity | None:
        """Apply a partial update.

        Direct fields replace the stored values; ``attributes`` is merged into
        the current attributes. Writes to one entity are serialized, so the
        merge always starts from the record the previous write produced.

        Returns:
            The updated entity, or None on failure.
        """
        self.last_error = None
        if not isinstance(patch, EntityPatch):
            try:
                patch = EntityPatch.model_validate(patch)
            except ValidationError as e:
                self._fail(
                    WorldGraphError(f"Invalid update: {e.error_count()} validation error(s)"),
                    "update_entity",
                    "entity_update_invalid",
                    detail=str(e),
                )
                return None

        async with self._lock_for(patch.id):
            return await self._apply_patch(patch)

    async def _apply_patch(self, patch: EntityPatch) -> Entity | None:
        current = self._find_node(patch.id)
        if current is None:
            self._fail(
                self._entity_missing(patch.id, "update_entity"),
                "update_entity",
                "entity_update_unknown",
                entity_id=patch.id,
            )
            return None

        fields: dict[str, Any] = {}
        for name in _DIRECT_FIELDS:
            if name in patch.model_fields_set:
                value = getattr(patch, name)
                if name in ("name", "entity_type") and value is None:
                    continue
                fields[name] = value
        if "attributes" in patch.model_fields_set and patch.attributes is not None:
            fields["attributes"] = merge_attributes(current.attributes, patch.attributes)

        if not fields:
            return current

        try:
            updated = await self._repository.update_entity(patch.id, fields)
        except Exception as e:
            self._fail(e, "update_entity", "entity_update_failed", entity_id=patch.id)
            return None

        if self._find_node(patch.id) is None:
            # Deleted or reloaded away while the request was in flight
            return updated
        self._replace_node(updated)

        if updated.entity_type != current.entity_type:
            stale = [
                r.id
                for r in self._edges
                if (r.source_id == updated.id and r.source_type != updated.entity_type)
                or (r.target_id == updated.id and r.target_type != updated.entity_type)
            ]
            if stale:
                log.warning(
                    "relations_stale_after_type_change",
                    entity_id=updated.id,
                    entity_type=updated.entity_type.value,
                    relation_ids=stale,
                )

        log.info("entity_updated", entity_id=updated.id, fields=sorted(fields))
        self._notify("entity_updated", updated.id)
        return updated

    async def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity and every relation it takes part in.

        Waits for the confirmer first; a declined confirmation is a no-op.

        Returns:
            True if the entity was deleted.
        """
        self.last_error = None
        entity = self._find_node(entity_id)
        if entity is None:
            self._fail(
                self._entity_missing(entity_id, "delete_entity"),
                "delete_entity",
                "entity_delete_unknown",
                entity_id=entity_id,
            )
            return False

        if not await self._confirmer.confirm(
            f"Delete {entity.entity_type.value} '{entity.name}' and its relations?"
        ):
            log.debug("entity_delete_declined", entity_id=entity_id)
            return False

        async with self._lock_for(entity_id):
            if self._find_node(entity_id) is None:
                self._fail(
                    self._entity_missing(entity_id, "delete_entity"),
                    "delete_entity",
                    "entity_delete_unknown",
                    entity_id=entity_id,
                )
                return False
            try:
                await self._repository.delete_entity(entity_id)
            except Exception as e:
                self._fail(e, "delete_entity", "entity_delete_failed", entity_id=entity_id)
                return False
        self._record_locks.pop(entity_id, None)

        removed = [e.id for e in self._edges if e.touches(entity_id)]
        self._edges = [e for e in self._edges if not e.touches(entity_id)]
        self._nodes = [n for n in self._nodes if n.id != entity_id]
        self._pending.pop(entity_id, None)
        if self.selected_node_id == entity_id:
            self.selected_node_id = None
        if self.selected_edge_id in removed:
            self.selected_edge_id = None

        log.info("entity_deleted", entity_id=entity_id, relations_removed=len(removed))
        self._notify("entity_deleted", entity_id, *removed)
        return True

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    async def update_entity_position(
        self,
        update: EntityPositionUpdate | dict[str, Any],
    ) -> bool:
        """Persist new column coordinates for a coordinate-backed entity.

        The new position is visible through :attr:`nodes` immediately and is
        committed once the repository confirms; on failure it is dropped and
        the previous position shows again.

        Types that keep their position in attributes are rejected; use
        :meth:`move_entity` for those.

        Returns:
            True if the position was persisted.
        """
        self.last_error = None
        if not isinstance(update, EntityPositionUpdate):
            try:
                update = EntityPositionUpdate.model_validate(update)
            except ValidationError as e:
                self._fail(
                    WorldGraphError(f"Invalid position: {e.error_count()} validation error(s)"),
                    "update_position",
                    "position_update_invalid",
                )
                return False

        entity = self._find_node(update.id)
        if entity is None:
            self._fail(
                self._entity_missing(update.id, "update_position"),
                "update_position",
                "position_update_unknown",
                entity_id=update.id,
            )
            return False
        if not is_coordinate_backed(entity.entity_type):
            self._fail(
                WorldGraphError(
                    f"{entity.entity_type.value} positions live in attributes; "
                    "use move_entity instead"
                ),
                "update_position",
                "position_update_not_column_backed",
                entity_id=update.id,
                entity_type=entity.entity_type.value,
            )
            return False

        pending = self._begin_pending(update.id, update.position_x, update.position_y)
        async with self._lock_for(update.id):
            try:
                stored = await self._repository.update_position(
                    update.id, update.position_x, update.position_y
                )
            except Exception as e:
                self._end_pending(update.id, pending)
                self._fail(e, "update_position", "position_update_failed", entity_id=update.id)
                self._notify("position_reverted", update.id)
                return False

        self._end_pending(update.id, pending)
        current = self._find_node(update.id)
        if current is not None:
            self._replace_node(
                current.model_copy(
                    update={"position_x": stored.position_x, "position_y": stored.position_y}
                )
            )
        log.debug(
            "position_committed",
            entity_id=update.id,
            x=stored.position_x,
            y=stored.position_y,
        )
        self._notify("position_committed", update.id)
        return True

    async def move_entity(self, entity_id: str, x: float, y: float) -> bool:
        """Commit a completed drag of *entity_id* to ``(x, y)``.

        Coordinates are rounded. Coordinate-backed types go through
        :meth:`update_entity_position`; the others merge ``graphPosition`` into
        their attributes. One write per call.
        """
        entity = self._find_node(entity_id)
        if entity is None:
            self._fail(
                self._entity_missing(entity_id, "move_entity"),
                "move_entity",
                "move_unknown_entity",
                entity_id=entity_id,
            )
            return False

        write_back = position_write_back(entity, x, y)
        if write_back.uses_columns:
            return await self.update_entity_position(
                EntityPositionUpdate(
                    id=entity_id, position_x=write_back.x, position_y=write_back.y
                )
            )

        pending = self._begin_pending(entity_id, write_back.x, write_back.y)
        try:
            updated = await self.update_entity(
                EntityPatch(
                    id=entity_id,
                    attributes={"graphPosition": {"x": write_back.x, "y": write_back.y}},
                )
            )
        finally:
            self._end_pending(entity_id, pending)
        if updated is None:
            self._notify("position_reverted", entity_id)
        return updated is not None

    def _lock_for(self, entity_id: str) -> asyncio.Lock:
        lock = self._record_locks.get(entity_id)
        if lock is None:
            lock = self._record_locks[entity_id] = asyncio.Lock()
        return lock

    def _begin_pending(self, entity_id: str, x: float, y: float) -> PendingPosition:
        pending = PendingPosition(x=x, y=y, started_at=self._clock())
        self._pending[entity_id] = pending
        self._notify("position_pending", entity_id)
        return pending

    def _end_pending(self, entity_id: str, pending: PendingPosition) -> None:
        # A newer drag may have replaced this entry; leave that one alone.
        current = self._pending.get(entity_id)
        if current is not None and current.token is pending.token:
            del self._pending[entity_id]

    def expire_pending(self, now: float | None = None) -> list[str]:
        """Drop pending positions older than the configured timeout.

        Returns:
            Ids whose pending position was dropped.
        """
        now = self._clock() if now is None else now
        expired = [
            entity_id
            for entity_id, pending in self._pending.items()
            if now - pending.started_at >= self._settings.pending_timeout
        ]
        for entity_id in expired:
            del self._pending[entity_id]
        if expired:
            log.debug("pending_positions_expired", entity_ids=expired)
            self._notify("position_reverted", *expired)
        return expired

    # -------------------------------------------------------------------------
    # Relations
    # -------------------------------------------------------------------------

    async def create_relation(self, data: RelationCreate | dict[str, Any]) -> Relation | None:
        """Create a relation between two loaded entities.

        Endpoint types are taken from the loaded entities. The type pair must
        be compatible; when ``relation`` is omitted its default kind is used.

        Returns:
            The created relation, or None if rejected or persistence failed.
        """
        self.last_error = None
        if not isinstance(data, RelationCreate):
            try:
                data = RelationCreate.model_validate(data)
            except ValidationError as e:
                self._fail(
                    WorldGraphError(f"Invalid relation: {e.error_count()} validation error(s)"),
                    "create_relation",
                    "relation_create_invalid",
                    detail=str(e),
                )
                return None

        project_id = data.project_id or self.active_project_id
        if project_id is None:
            self._fail(
                WorldGraphError("No project is loaded"),
                "create_relation",
                "relation_create_no_project",
            )
            return None

        source = self._find_node(data.source_id)
        target = self._find_node(data.target_id)
        if source is None or target is None:
            missing = data.source_id if source is None else data.target_id
            self._fail(
                self._entity_missing(missing, "create_relation"),
                "create_relation",
                "relation_endpoint_unknown",
                source_id=data.source_id,
                target_id=data.target_id,
            )
            return None
        for endpoint in (source, target):
            if endpoint.project_id != project_id:
                self._fail(
                    ProjectMismatchError(project_id, endpoint.id, endpoint.project_id),
                    "create_relation",
                    "relation_project_mismatch",
                )
                return None

        default_kind = compatible_relation(
            source.entity_type,
            target.entity_type,
            same_entity=source.id == target.id,
            allow_self_loop=self._settings.allow_self_loops,
        )
        if default_kind is None:
            self.last_error = IncompatibleRelationError(
                source.entity_type.value,
                target.entity_type.value,
                self_loop=source.id == target.id,
            )
            log.info(
                "relation_incompatible",
                source_type=source.entity_type.value,
                target_type=target.entity_type.value,
                self_loop=source.id == target.id,
            )
            return None

        resolved = data.model_copy(
            update={
                "project_id": project_id,
                "relation": data.relation or default_kind,
                "source_type": source.entity_type,
                "target_type": target.entity_type,
            }
        )
        try:
            created = await self._repository.create_relation(resolved)
        except Exception as e:
            self._fail(e, "create_relation", "relation_create_failed")
            return None

        if self.active_project_id in (None, created.project_id):
            self._edges = [*self._edges, created]
        log.info(
            "relation_created",
            relation_id=created.id,
            relation=created.relation.value,
            source_id=created.source_id,
            target_id=created.target_id,
        )
        self._notify("relation_created", created.id)
        return created

    async def update_relation(
        self, relation_id: str, relation: RelationKind | str
    ) -> Relation | None:
        """Change a relation's kind. The compatibility table is not consulted.

        Returns:
            The updated relation, or None on failure.
        """
        self.last_error = None
        try:
            kind = RelationKind(relation)
        except ValueError:
            self._fail(
                WorldGraphError(f"Unknown relation kind '{relation}'"),
                "update_relation",
                "relation_update_invalid",
            )
            return None

        if self.get_relation(relation_id) is None:
            self._fail(
                RelationNotFoundError(relation_id, context="update_relation"),
                "update_relation",
                "relation_update_unknown",
            )
            return None

        try:
            updated = await self._repository.update_relation(relation_id, kind)
        except Exception as e:
            self._fail(e, "update_relation", "relation_update_failed", relation_id=relation_id)
            return None

        self._edges = [updated if e.id == relation_id else e for e in self._edges]
        log.info("relation_updated", relation_id=relation_id, relation=kind.value)
        self._notify("relation_updated", relation_id)
        return updated

    async def delete_relation(self, relation_id: str) -> bool:
        """Delete a relation after confirmation.

        Returns:
            True if the relation was deleted.
        """
        self.last_error = None
        relation = self.get_relation(relation_id)
        if relation is None:
            self._fail(
                RelationNotFoundError(relation_id, context="delete_relation"),
                "delete_relation",
                "relation_delete_unknown",
            )
            return False

        if not await self._confirmer.confirm(f"Delete '{relation.relation.value}' relation?"):
            log.debug("relation_delete_declined", relation_id=relation_id)
            return False

        try:
            await self._repository.delete_relation(relation_id)
        except Exception as e:
            self._fail(e, "delete_relation", "relation_delete_failed", relation_id=relation_id)
            return False

        self._edges = [e for e in self._edges if e.id != relation_id]
        if self.selected_edge_id == relation_id:
            self.selected_edge_id = None
        log.info("relation_deleted", relation_id=relation_id)
        self._notify("relation_deleted", relation_id)
        return True

    def __repr__(self) -> str:
        return (
            f"WorldGraphStore(project={self.active_project_id}, "
            f"nodes={len(self._nodes)}, edges={len(self._edges)})"
        )
