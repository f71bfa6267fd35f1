"""Record shapes shared by every world-graph component."""

from loreweave.models.world import (
    APPEARANCE_TYPES,
    COORDINATE_BACKED_TYPES,
    Appearance,
    Chapter,
    Entity,
    EntityCreate,
    EntityPatch,
    EntityPositionUpdate,
    EntityType,
    FilterState,
    Mention,
    MentionOrigin,
    Relation,
    RelationCreate,
    RelationKind,
    ViewMode,
    WorldGraphData,
    is_coordinate_backed,
)

__all__ = [
    "APPEARANCE_TYPES",
    "COORDINATE_BACKED_TYPES",
    "Appearance",
    "Chapter",
    "Entity",
    "EntityCreate",
    "EntityPatch",
    "EntityPositionUpdate",
    "EntityType",
    "FilterState",
    "Mention",
    "MentionOrigin",
    "Relation",
    "RelationCreate",
    "RelationKind",
    "ViewMode",
    "WorldGraphData",
    "is_coordinate_backed",
]
