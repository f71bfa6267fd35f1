"""Visible-subgraph derivation for the world graph.

Node visibility comes from the type, search and tag filters. Edge visibility
is subordinate: an edge is shown only when both endpoints are visible and
its own kind passes the relation filter. Output keeps input order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loreweave.graph.attributes import get_tags
from loreweave.models import EntityType, WorldGraphData

if TYPE_CHECKING:
    from collections.abc import Iterable

    from loreweave.models import Entity, FilterState, Relation

_ENTITY_TYPE_VALUES = {t.value for t in EntityType}


def node_passes(node: Entity, filter_state: FilterState) -> bool:
    """Return True if *node* passes the node filter."""
    if filter_state.entity_types and node.effective_type not in filter_state.entity_types:
        return False

    query = filter_state.search_query.lower()
    if query:
        haystacks = [node.name]
        if filter_state.match_description and node.description:
            haystacks.append(node.description)
        if not any(query in h.lower() for h in haystacks):
            return False

    if filter_state.tags:
        node_tags = set(get_tags(node.attributes))
        if not filter_state.tags <= node_tags:
            return False

    return True


def edge_passes(edge: Relation, visible_ids: set[str], filter_state: FilterState) -> bool:
    """Return True if *edge* is visible given the set of visible node ids."""
    if edge.source_id not in visible_ids or edge.target_id not in visible_ids:
        return False
    return not filter_state.relation_kinds or edge.relation in filter_state.relation_kinds


def filtered_graph(graph: WorldGraphData, filter_state: FilterState) -> WorldGraphData:
    """Derive the visible subgraph of *graph* under *filter_state*."""
    nodes = [n for n in graph.nodes if node_passes(n, filter_state)]
    visible_ids = {n.id for n in nodes}
    edges = [e for e in graph.edges if edge_passes(e, visible_ids, filter_state)]
    return WorldGraphData(nodes=nodes, edges=edges)


def bucket_type(node: Entity) -> EntityType:
    """Return the sidebar bucket for *node*.

    The effective type when it names an :class:`EntityType`, otherwise the
    node's base type (free-form subtypes such as "Region" group with Place).
    """
    effective = node.effective_type
    if effective in _ENTITY_TYPE_VALUES:
        return EntityType(effective)
    return node.entity_type


def group_by_type(
    nodes: Iterable[Entity],
    filter_state: FilterState,
) -> dict[EntityType, list[Entity]]:
    """Partition already-filtered nodes into per-type buckets.

    Buckets follow :class:`EntityType` order. Empty buckets are kept for types
    named in an active type filter and omitted otherwise.
    """
    buckets: dict[EntityType, list[Entity]] = {t: [] for t in EntityType}
    for node in nodes:
        buckets[bucket_type(node)].append(node)

    return {
        entity_type: members
        for entity_type, members in buckets.items()
        if members or entity_type.value in filter_state.entity_types
    }
