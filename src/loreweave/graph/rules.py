"""Relation compatibility rules.

Each relation kind admits a set of source types and a set of target types.
The table is ordered: the first kind that admits a (source, target) pair is
that pair's default relation, used to pre-populate edges created by
connecting two nodes directly. A pair no kind admits is incompatible.
"""

from __future__ import annotations

from dataclasses import dataclass

from loreweave.models import EntityType, RelationKind


@dataclass(frozen=True)
class RelationRule:
    """Source and target types a relation kind may connect."""

    sources: frozenset[EntityType]
    targets: frozenset[EntityType]

    def admits(self, source: EntityType, target: EntityType) -> bool:
        return source in self.sources and target in self.targets


def _rule(sources: set[EntityType], targets: set[EntityType]) -> RelationRule:
    return RelationRule(frozenset(sources), frozenset(targets))


_C = EntityType.CHARACTER
_F = EntityType.FACTION
_E = EntityType.EVENT
_P = EntityType.PLACE
_K = EntityType.CONCEPT
_R = EntityType.RULE
_I = EntityType.ITEM

# Order matters: it decides the default kind for pairs several kinds admit.
RELATION_RULES: dict[RelationKind, RelationRule] = {
    RelationKind.BELONGS_TO: _rule({_C, _I}, {_C, _F}),
    RelationKind.ENEMY_OF: _rule({_C, _F}, {_C, _F}),
    RelationKind.CAUSES: _rule({_E, _I, _K, _R}, {_E}),
    RelationKind.LOCATED_IN: _rule({_P, _C, _I, _E}, {_P}),
    RelationKind.CONTROLS: _rule({_C, _F}, {_P, _F, _K, _I}),
    RelationKind.VIOLATES: _rule({_C, _F, _E}, {_R}),
}


def canonical_type(entity_type: EntityType) -> EntityType:
    """Map an entity type onto the type the rule table is written in.

    Glossary terms are concepts as far as relations are concerned.
    """
    if entity_type is EntityType.TERM:
        return EntityType.CONCEPT
    return entity_type


def allowed_relations(source: EntityType, target: EntityType) -> list[RelationKind]:
    """Return every relation kind whose rule admits ``source -> target``, in table order."""
    src = canonical_type(source)
    tgt = canonical_type(target)
    return [kind for kind, rule in RELATION_RULES.items() if rule.admits(src, tgt)]


def is_relation_allowed(kind: RelationKind, source: EntityType, target: EntityType) -> bool:
    """Return True if *kind*'s rule admits ``source -> target``."""
    return RELATION_RULES[kind].admits(canonical_type(source), canonical_type(target))


def compatible_relation(
    source: EntityType,
    target: EntityType,
    *,
    same_entity: bool = False,
    allow_self_loop: bool = False,
) -> RelationKind | None:
    """Return the default relation kind for a pair, or None if incompatible.

    Args:
        source: Source entity type.
        target: Target entity type.
        same_entity: True when both endpoints are the same entity.
        allow_self_loop: Permit self-loops for pairs that otherwise have a rule.

    Returns:
        The first admitting kind in table order, or None.
    """
    if same_entity and not allow_self_loop:
        return None
    kinds = allowed_relations(source, target)
    return kinds[0] if kinds else None
