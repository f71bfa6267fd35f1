"""Initial canvas placement for world-graph nodes.

A node's position is resolved with this precedence:

1. Explicit ``positionX``/``positionY`` when either is non-zero.
2. ``attributes.graphPosition`` when it holds finite ``x``/``y`` numbers.
3. A deterministic fallback computed from the entity id and its index in the
   loaded node list, so reloading the same graph reproduces the same layout
   without persisting anything.

The fallback lays nodes out on a four-column brick grid: odd rows shift right
by half a column and every node gets a small jitter taken from its id hash so
that nodes sharing a column do not stack exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loreweave.graph.attributes import get_graph_position, with_graph_position
from loreweave.models import is_coordinate_backed

if TYPE_CHECKING:
    from collections.abc import Sequence

    from loreweave.models import Entity

GRID_COLUMNS = 4
CELL_WIDTH = 280
CELL_HEIGHT = 180
BRICK_OFFSET = 90
JITTER_X = 42
JITTER_Y = 36


@dataclass(frozen=True)
class Position:
    """A 2D canvas coordinate."""

    x: float
    y: float


@dataclass(frozen=True)
class PositionWriteBack:
    """Where a committed drag should be stored.

    Coordinate-backed types (``uses_columns``) write ``positionX``/``positionY``;
    the rest write ``attributes`` with an updated ``graphPosition``.
    """

    entity_id: str
    x: int
    y: int
    uses_columns: bool
    attributes: dict[str, Any] | None = None


def id_hash(value: str) -> int:
    """Polynomial rolling hash of *value* (31-based, signed 32-bit), as a non-negative int."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def _jitter(bits: int, radius: int) -> int:
    return bits % (2 * radius + 1) - radius


def fallback_position(entity_id: str, index: int) -> Position:
    """Compute the deterministic grid position for a node.

    Pure function of ``(entity_id, index)``.

    Args:
        entity_id: The entity's stable id.
        index: The entity's index in the loaded node list.

    Returns:
        Position on the brick grid, jittered by the id hash.

    Raises:
        ValueError: If *index* is negative.
    """
    if index < 0:
        raise ValueError(f"index must be non-negative, got {index}")

    h = id_hash(entity_id)
    column = h % GRID_COLUMNS
    row = index // GRID_COLUMNS
    offset = BRICK_OFFSET if row % 2 == 1 else 0

    x = column * CELL_WIDTH + offset + _jitter(h & 0xFF, JITTER_X)
    y = row * CELL_HEIGHT + _jitter((h >> 8) & 0xFF, JITTER_Y)
    return Position(float(x), float(y))


def resolve_position(entity: Entity, index: int) -> Position:
    """Return the initial render position for *entity* at *index*."""
    if entity.position_x != 0 or entity.position_y != 0:
        return Position(entity.position_x, entity.position_y)

    embedded = get_graph_position(entity.attributes)
    if embedded is not None:
        return Position(*embedded)

    return fallback_position(entity.id, index)


def layout_graph(nodes: Sequence[Entity]) -> dict[str, Position]:
    """Resolve positions for every node, keyed by entity id, in input order."""
    return {node.id: resolve_position(node, index) for index, node in enumerate(nodes)}


def position_write_back(entity: Entity, x: float, y: float) -> PositionWriteBack:
    """Decide how a completed drag to ``(x, y)`` is persisted for *entity*.

    Coordinates are rounded to integers. Attribute-backed entities get a full
    replacement ``attributes`` mapping that keeps every other key.
    """
    rx = round(x)
    ry = round(y)
    if is_coordinate_backed(entity.entity_type):
        return PositionWriteBack(entity_id=entity.id, x=rx, y=ry, uses_columns=True)
    return PositionWriteBack(
        entity_id=entity.id,
        x=rx,
        y=ry,
        uses_columns=False,
        attributes=with_graph_position(entity.attributes, rx, ry),
    )
