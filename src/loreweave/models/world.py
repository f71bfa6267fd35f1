"""Pydantic models for world-graph records.

Entities are typed nodes (characters, places, concepts, ...) and relations are
typed directed edges between them. Both are scoped to exactly one project.

Field names follow Python conventions; the camelCase aliases (``projectId``,
``entityType``, ``positionX`` ...) are the record shape exchanged with the
persistence collaborator, so ``model_dump(by_alias=True)`` round-trips with it.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class EntityType(StrEnum):
    """Fixed enumeration of world entity types."""

    CHARACTER = "Character"
    FACTION = "Faction"
    EVENT = "Event"
    TERM = "Term"
    PLACE = "Place"
    CONCEPT = "Concept"
    RULE = "Rule"
    ITEM = "Item"


class RelationKind(StrEnum):
    """Fixed enumeration of relation kinds."""

    BELONGS_TO = "belongs_to"
    ENEMY_OF = "enemy_of"
    CAUSES = "causes"
    CONTROLS = "controls"
    LOCATED_IN = "located_in"
    VIOLATES = "violates"


class ViewMode(StrEnum):
    """Canvas arrangements the rendering layer can switch between."""

    STANDARD = "standard"
    PROTAGONIST = "protagonist"
    EVENT_CHAIN = "event-chain"
    FREEFORM = "freeform"


# Types persisted with dedicated positionX/positionY columns. Everything else
# keeps its canvas position under attributes["graphPosition"].
COORDINATE_BACKED_TYPES: frozenset[EntityType] = frozenset(
    {EntityType.PLACE, EntityType.CONCEPT, EntityType.RULE, EntityType.ITEM}
)


def is_coordinate_backed(entity_type: EntityType) -> bool:
    """Return True if *entity_type* stores its position in dedicated columns."""
    return entity_type in COORDINATE_BACKED_TYPES


# Types whose chapter appearances can be recorded ahead of any name search.
APPEARANCE_TYPES: frozenset[EntityType] = frozenset({EntityType.CHARACTER, EntityType.TERM})


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _require_name(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("name must not be blank")
    return stripped


EntityName = Annotated[str, AfterValidator(_require_name)]


class Entity(_Record):
    """A typed node in the world graph.

    Attributes:
        id: Stable identifier assigned by the persistence layer.
        project_id: Owning project.
        entity_type: One of :class:`EntityType`.
        sub_type: Optional refinement (e.g. Place -> "Region").
        name: Display label, not required to be unique.
        description: Optional free text.
        first_appearance: Optional note on where the entity first shows up.
        position_x: Last known canvas x; ``(0, 0)`` means unset.
        position_y: Last known canvas y.
        attributes: Open mapping (tags, importance, region, era, graphPosition).
    """

    id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    entity_type: EntityType
    sub_type: str | None = None
    name: EntityName
    description: str | None = None
    first_appearance: str | None = None
    position_x: float = 0.0
    position_y: float = 0.0
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("attributes", mode="before")
    @classmethod
    def _none_attributes(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def effective_type(self) -> str:
        """``sub_type`` if present, else ``entity_type``."""
        return self.sub_type or self.entity_type.value


class EntityCreate(_Record):
    """Validated input for creating an entity."""

    project_id: str = Field(min_length=1)
    entity_type: EntityType
    sub_type: str | None = None
    name: EntityName
    description: str | None = None
    first_appearance: str | None = None
    position_x: float = 0.0
    position_y: float = 0.0
    attributes: dict[str, Any] = Field(default_factory=dict)


class EntityPatch(_Record):
    """Partial update for an entity.

    Only fields explicitly set (``model_fields_set``) are applied. Direct fields
    replace the stored value; ``attributes`` is merged key by key.
    """

    id: str = Field(min_length=1)
    name: str | None = None
    description: str | None = None
    entity_type: EntityType | None = None
    sub_type: str | None = None
    first_appearance: str | None = None
    attributes: dict[str, Any] | None = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str | None) -> str | None:
        return None if value is None else _require_name(value)


class EntityPositionUpdate(_Record):
    """Coordinate write-back for coordinate-backed entity types."""

    id: str = Field(min_length=1)
    position_x: float
    position_y: float


class Relation(_Record):
    """A typed directed edge between two entities.

    ``source_type``/``target_type`` are frozen copies of the endpoint types at
    creation time.
    """

    id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    source_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    source_type: EntityType
    target_type: EntityType
    relation: RelationKind
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("attributes", mode="before")
    @classmethod
    def _none_attributes(cls, value: Any) -> Any:
        return {} if value is None else value

    def touches(self, entity_id: str) -> bool:
        """Return True if *entity_id* is the source or target."""
        return entity_id in (self.source_id, self.target_id)


class RelationCreate(_Record):
    """Input for creating a relation.

    ``relation`` may be omitted, in which case the default kind for the
    endpoint type pair is used. ``project_id`` defaults to the active project.
    ``source_type``/``target_type`` are filled in by the graph store from the
    loaded entities; callers normally leave them unset.
    """

    project_id: str | None = None
    source_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    relation: RelationKind | None = None
    source_type: EntityType | None = None
    target_type: EntityType | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class WorldGraphData(_Record):
    """Nodes and edges of one project's world graph."""

    nodes: list[Entity] = Field(default_factory=list)
    edges: list[Relation] = Field(default_factory=list)


class FilterState(_Record):
    """Ephemeral view filter over the world graph.

    Empty sets mean "show all".

    Attributes:
        entity_types: Effective types to show.
        relation_kinds: Relation kinds to show.
        search_query: Case-insensitive substring matched against names.
        tags: Entity must carry every listed tag.
        match_description: Also match ``search_query`` against descriptions.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    entity_types: frozenset[str] = frozenset()
    relation_kinds: frozenset[RelationKind] = frozenset()
    search_query: str = ""
    tags: frozenset[str] = frozenset()
    match_description: bool = False

    @property
    def is_active(self) -> bool:
        """True if any constraint is set."""
        return bool(
            self.entity_types or self.relation_kinds or self.search_query or self.tags
        )


class Chapter(_Record):
    """A manuscript chapter as seen by the mention search."""

    id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    title: str
    content: str = ""
    order: int = 0


class MentionOrigin(StrEnum):
    """How a mention was found."""

    APPEARANCE = "appearance"
    CONTENT_MATCH = "content-match"


class Appearance(_Record):
    """A recorded sighting of a character or term in a chapter."""

    entity_id: str = Field(min_length=1)
    entity_type: EntityType
    chapter_id: str = Field(min_length=1)
    position: int | None = None
    context: str | None = None
    created_at: datetime | None = None


class Mention(_Record):
    """A manuscript passage that references an entity.

    ``source`` tells recorded appearances apart from name matches found by
    scanning chapter text.
    """

    chapter_id: str
    chapter_title: str
    context: str = ""
    position: int | None = None
    source: MentionOrigin = MentionOrigin.CONTENT_MATCH
