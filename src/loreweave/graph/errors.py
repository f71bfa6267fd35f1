"""World-graph error types.

Repositories raise these when a persistence call cannot be honoured; the
graph store catches them at the boundary and turns them into ``None``/``False``
return values. Each error can format itself as markdown feedback for display
in a CLI or inspector panel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import get_close_matches


class WorldGraphError(Exception):
    """Base class for world-graph failures."""

    def to_feedback(self) -> str:
        """Format the error as a short markdown explanation."""
        return str(self)


class PersistenceError(WorldGraphError):
    """Raised when the persistence collaborator fails to apply an operation."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


@dataclass
class EntityNotFoundError(PersistenceError):
    """Raised when referencing an entity that does not exist.

    Attributes:
        entity_id: The ID (or name) that was referenced.
        available: Names or IDs that could be used instead.
        context: Where the reference occurred.
    """

    entity_id: str
    available: list[str] = field(default_factory=list)
    context: str = ""

    def __post_init__(self) -> None:
        reason = f"entity '{self.entity_id}' not found"
        super().__init__(self.context or "lookup", reason)

    def suggestions(self) -> list[str]:
        """Return up to three close matches from ``available``."""
        return get_close_matches(self.entity_id, self.available, n=3, cutoff=0.6)

    def to_feedback(self) -> str:
        lines = [
            "## Entity Not Found",
            "",
            f"**You referenced**: `{self.entity_id}`",
        ]
        if self.context:
            lines.append(f"**Context**: {self.context}")

        suggestions = self.suggestions()
        if suggestions:
            lines.append("")
            lines.append("**Did you mean one of these?**")
            for s in suggestions:
                lines.append(f"  - `{s}`")

        return "\n".join(lines)


@dataclass
class RelationNotFoundError(PersistenceError):
    """Raised when referencing a relation that does not exist."""

    relation_id: str
    context: str = ""

    def __post_init__(self) -> None:
        super().__init__(self.context or "lookup", f"relation '{self.relation_id}' not found")


@dataclass
class IncompatibleRelationError(WorldGraphError):
    """Raised when two entity types cannot be connected.

    Attributes:
        source_type: Entity type of the source endpoint.
        target_type: Entity type of the target endpoint.
        self_loop: True if both endpoints were the same entity.
    """

    source_type: str
    target_type: str
    self_loop: bool = False

    def __post_init__(self) -> None:
        if self.self_loop:
            msg = f"Cannot connect a {self.source_type} to itself"
        else:
            msg = f"No relation connects {self.source_type} to {self.target_type}"
        super().__init__(msg)

    def to_feedback(self) -> str:
        return "\n".join(
            [
                "## Incompatible Relation",
                "",
                f"**Source type**: `{self.source_type}`",
                f"**Target type**: `{self.target_type}`",
                "",
                f"**Problem**: {self}.",
            ]
        )


@dataclass
class ProjectMismatchError(WorldGraphError):
    """Raised when a relation would cross project boundaries."""

    project_id: str
    entity_id: str
    entity_project_id: str

    def __post_init__(self) -> None:
        super().__init__(
            f"Entity '{self.entity_id}' belongs to project '{self.entity_project_id}', "
            f"not '{self.project_id}'"
        )
