"""Factory functions for world-graph test data.

Sample world used across tests:
    alice (Character) --enemy_of--> bram (Character)
    alice (Character) --belongs_to--> guild (Faction)
    bram (Character) --located_in--> keep (Place, stored at 100, 40)
"""

from __future__ import annotations

from typing import Any

from loreweave.models import Chapter, Entity, EntityType, Relation, RelationKind, WorldGraphData

PROJECT_ID = "proj-1"


def make_entity(
    entity_id: str,
    entity_type: EntityType = EntityType.CHARACTER,
    name: str | None = None,
    *,
    project_id: str = PROJECT_ID,
    **fields: Any,
) -> Entity:
    """Build an Entity, naming it after its id unless *name* is given."""
    return Entity(
        id=entity_id,
        project_id=project_id,
        entity_type=entity_type,
        name=name or entity_id.title(),
        **fields,
    )


def make_relation(
    relation_id: str,
    source: Entity,
    target: Entity,
    relation: RelationKind = RelationKind.ENEMY_OF,
) -> Relation:
    """Build a Relation between two entities with frozen endpoint types."""
    return Relation(
        id=relation_id,
        project_id=source.project_id,
        source_id=source.id,
        target_id=target.id,
        source_type=source.entity_type,
        target_type=target.entity_type,
        relation=relation,
    )


def make_sample_graph() -> WorldGraphData:
    """Create the four-entity, three-relation sample world."""
    alice = make_entity("alice", EntityType.CHARACTER, "Alice")
    bram = make_entity("bram", EntityType.CHARACTER, "Bram")
    guild = make_entity("guild", EntityType.FACTION, "Ash Guild")
    keep = make_entity("keep", EntityType.PLACE, "Old Keep", position_x=100.0, position_y=40.0)
    return WorldGraphData(
        nodes=[alice, bram, guild, keep],
        edges=[
            make_relation("r1", alice, bram, RelationKind.ENEMY_OF),
            make_relation("r2", alice, guild, RelationKind.BELONGS_TO),
            make_relation("r3", bram, keep, RelationKind.LOCATED_IN),
        ],
    )


def make_chapters(project_id: str = PROJECT_ID) -> list[Chapter]:
    """Create three chapters, given out of order, mentioning the sample world."""
    return [
        Chapter(
            id="ch2",
            project_id=project_id,
            title="The Keep",
            content="<p>Bram waited at the <em>Old Keep</em> for news of alice.</p>",
            order=2,
        ),
        Chapter(
            id="ch1",
            project_id=project_id,
            title="Ashes",
            content="<p>ALICE swore an oath to the Ash Guild &amp; never looked back.</p>",
            order=1,
        ),
        Chapter(
            id="ch3",
            project_id=project_id,
            title="Quiet",
            content="<p>Nobody came.</p>",
            order=3,
        ),
    ]
