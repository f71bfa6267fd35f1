"""Manuscript mentions for the selected entity.

A :class:`MentionSource` answers "where in the manuscript does this entity
appear?". :class:`ChapterMentionSearch` is the built-in source: it returns the
recorded appearances of a character or term, and otherwise scans chapter
text for the entity name. :class:`MentionResolver` ties a source to a
:class:`~loreweave.graph.world_graph.WorldGraphStore` and keeps the mention
list in step with the current node selection.

Mention lookups never raise to the caller. A failed lookup is logged and
yields an empty list.
"""

from __future__ import annotations

import html
import re
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loreweave.config import DEFAULT_CONTEXT_RADIUS, DEFAULT_MENTION_LIMIT
from loreweave.graph.errors import EntityNotFoundError, PersistenceError
from loreweave.models import (
    APPEARANCE_TYPES,
    Chapter,
    EntityType,
    Mention,
    MentionOrigin,
)
from loreweave.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from loreweave.graph.store import WorldRepository
    from loreweave.graph.world_graph import GraphChange, WorldGraphStore
    from loreweave.models import Appearance

log = get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


@runtime_checkable
class MentionSource(Protocol):
    """Returns the mentions of one entity within one project."""

    async def get_mentions(
        self,
        project_id: str,
        entity_id: str,
        entity_type: EntityType | None = None,
    ) -> list[Mention]: ...


def html_to_plain_text(content: str) -> str:
    """Strip tags, unescape entities and collapse whitespace."""
    text = _TAG_RE.sub(" ", content)
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def find_mention(
    chapter: Chapter,
    needle: str,
    context_radius: int = DEFAULT_CONTEXT_RADIUS,
) -> Mention | None:
    """Return the first case-insensitive occurrence of *needle* in *chapter*.

    The context is the plain-text window of ``context_radius`` characters on
    each side of the match start.
    """
    query = needle.strip().lower()
    if not query:
        return None
    text = html_to_plain_text(chapter.content)
    index = text.lower().find(query)
    if index < 0:
        return None

    start = max(0, index - context_radius)
    end = min(len(text), index + context_radius)
    return Mention(
        chapter_id=chapter.id,
        chapter_title=chapter.title,
        context=text[start:end],
        position=index,
        source=MentionOrigin.CONTENT_MATCH,
    )


@runtime_checkable
class AppearanceLog(Protocol):
    """Recorded chapter appearances of characters and terms."""

    async def list_appearances(
        self,
        entity_type: EntityType,
        entity_id: str,
        limit: int,
    ) -> list[Appearance]: ...


class ChapterMentionSearch:
    """Mention source that scans chapter text for the entity's name.

    For characters and terms, recorded appearances are returned first (oldest
    first) when an :class:`AppearanceLog` is given; the text scan only runs
    when none are recorded. Chapters are scanned in ``order`` and each
    contributes at most one mention (its first match).

    Args:
        chapters: Every chapter available to the search.
        repository: Used to look up the entity's name.
        appearances: Optional log of recorded appearances.
        context_radius: Context characters on each side of a match.
        limit: Maximum mentions returned.
    """

    def __init__(
        self,
        chapters: Iterable[Chapter],
        repository: WorldRepository,
        *,
        appearances: AppearanceLog | None = None,
        context_radius: int = DEFAULT_CONTEXT_RADIUS,
        limit: int = DEFAULT_MENTION_LIMIT,
    ) -> None:
        self._chapters = sorted(chapters, key=lambda c: c.order)
        self._repository = repository
        self._appearances = appearances
        self.context_radius = context_radius
        self.limit = limit

    async def get_mentions(
        self,
        project_id: str,
        entity_id: str,
        entity_type: EntityType | None = None,
    ) -> list[Mention]:
        entity = await self._repository.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id, context="get_mentions")
        if entity.project_id != project_id:
            raise PersistenceError(
                "get_mentions",
                f"entity '{entity_id}' belongs to project '{entity.project_id}'",
            )

        recorded = await self._recorded_mentions(
            project_id, entity_id, entity_type or entity.entity_type
        )
        if recorded:
            return recorded

        mentions: list[Mention] = []
        for chapter in self._chapters:
            if chapter.project_id != project_id:
                continue
            mention = find_mention(chapter, entity.name, self.context_radius)
            if mention is not None:
                mentions.append(mention)
                if len(mentions) >= self.limit:
                    break
        return mentions

    async def _recorded_mentions(
        self, project_id: str, entity_id: str, entity_type: EntityType
    ) -> list[Mention]:
        if self._appearances is None or entity_type not in APPEARANCE_TYPES:
            return []
        rows = await self._appearances.list_appearances(entity_type, entity_id, self.limit)
        titles = {c.id: c.title for c in self._chapters if c.project_id == project_id}
        # Appearances in chapters outside the project are dropped
        return [
            Mention(
                chapter_id=row.chapter_id,
                chapter_title=titles[row.chapter_id],
                context=row.context or "",
                position=row.position,
                source=MentionOrigin.APPEARANCE,
            )
            for row in rows
            if row.chapter_id in titles
        ]


async def resolve_mentions(
    source: MentionSource,
    project_id: str,
    entity_id: str,
    entity_type: EntityType | None = None,
) -> list[Mention]:
    """Fetch mentions from *source*, degrading any failure to ``[]``."""
    try:
        return await source.get_mentions(project_id, entity_id, entity_type)
    except Exception as e:
        log.warning(
            "mention_lookup_failed",
            project_id=project_id,
            entity_id=entity_id,
            error=str(e),
        )
        return []


class MentionResolver:
    """Keeps the selected entity's mentions up to date.

    Subscribes to the store; when the node selection changes the previous
    result is cleared. Call :meth:`refresh` to fetch for the current
    selection. A result that arrives after the selection moved on is dropped.
    """

    def __init__(self, source: MentionSource, store: WorldGraphStore) -> None:
        self._source = source
        self._store = store
        self._entity_id: str | None = None
        self.mentions: list[Mention] = []
        self._unsubscribe: Callable[[], None] | None = store.subscribe(self._on_change)

    def _on_change(self, change: GraphChange) -> None:
        if change.kind in ("selection", "loaded", "entity_deleted") and (
            self._store.selected_node_id != self._entity_id
        ):
            self._entity_id = None
            self.mentions = []

    async def refresh(self) -> list[Mention]:
        """Fetch mentions for the currently selected node."""
        entity_id = self._store.selected_node_id
        project_id = self._store.active_project_id
        if entity_id is None or project_id is None:
            self._entity_id = None
            self.mentions = []
            return []

        self._entity_id = entity_id
        entity = self._store.get_entity(entity_id)
        entity_type = entity.entity_type if entity is not None else None
        mentions = await resolve_mentions(self._source, project_id, entity_id, entity_type)

        if self._store.selected_node_id != entity_id:
            log.debug("mention_result_discarded", entity_id=entity_id)
            return self.mentions
        self.mentions = mentions
        return mentions

    def close(self) -> None:
        """Stop following the store."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
