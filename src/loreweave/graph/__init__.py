"""Graph package - world graph engine.

The WorldGraphStore holds the active project's entities and relations and is
the only place they are mutated. Layout, compatibility rules, filtering and
mention lookups are pure helpers around it; persistence goes through a
WorldRepository implementation.
"""

from loreweave.graph.errors import (
    EntityNotFoundError,
    IncompatibleRelationError,
    PersistenceError,
    ProjectMismatchError,
    RelationNotFoundError,
    WorldGraphError,
)
from loreweave.graph.filtering import filtered_graph, group_by_type
from loreweave.graph.layout import (
    Position,
    fallback_position,
    layout_graph,
    position_write_back,
    resolve_position,
)
from loreweave.graph.mentions import (
    AppearanceLog,
    ChapterMentionSearch,
    MentionResolver,
    MentionSource,
    resolve_mentions,
)
from loreweave.graph.rules import (
    RELATION_RULES,
    allowed_relations,
    compatible_relation,
    is_relation_allowed,
)
from loreweave.graph.sqlite_store import SqliteWorldRepository
from loreweave.graph.store import InMemoryWorldRepository, WorldRepository
from loreweave.graph.world_graph import AutoConfirm, Confirmer, GraphChange, WorldGraphStore

__all__ = [
    "RELATION_RULES",
    "AppearanceLog",
    "AutoConfirm",
    "ChapterMentionSearch",
    "Confirmer",
    "EntityNotFoundError",
    "GraphChange",
    "InMemoryWorldRepository",
    "IncompatibleRelationError",
    "MentionResolver",
    "MentionSource",
    "PersistenceError",
    "Position",
    "ProjectMismatchError",
    "RelationNotFoundError",
    "SqliteWorldRepository",
    "WorldGraphError",
    "WorldGraphStore",
    "WorldRepository",
    "allowed_relations",
    "compatible_relation",
    "fallback_position",
    "filtered_graph",
    "group_by_type",
    "is_relation_allowed",
    "layout_graph",
    "position_write_back",
    "resolve_mentions",
]
