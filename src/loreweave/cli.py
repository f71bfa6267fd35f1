"""LoreWeave CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from loreweave.models import Chapter, Entity, EntityPatch, EntityType, RelationKind, ViewMode
from loreweave.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from loreweave.config import ProjectConfig
    from loreweave.graph import SqliteWorldRepository, WorldGraphStore

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="lw",
    help="LoreWeave: world-graph modelling for long-form fiction.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

WORLD_DB = "world.db"
CHAPTER_SUFFIXES = (".md", ".txt", ".html", ".htm")

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False

ProjectOption = Annotated[
    Path | None,
    typer.Option(
        "--project",
        "-p",
        help="Project directory (default: current directory).",
        envvar="LOREWEAVE_PROJECT",
    ),
]
YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Do not ask for confirmation."),
]


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to {project}/logs/debug.jsonl.",
        ),
    ] = False,
) -> None:
    """LoreWeave: world-graph modelling for long-form fiction."""
    global _verbose, _log_enabled
    _verbose = verbose
    _log_enabled = log_

    # Console logging now; file logging once the project is known
    configure_logging(verbosity=verbose)


def _configure_project_logging(project_path: Path) -> None:
    """Configure file logging if --log flag was set."""
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, project_path=project_path)
        atexit.register(close_file_logging)


def _require_project(project_path: Path) -> None:
    """Verify project.yaml and the world database exist, exit with error if not."""
    if not (project_path / "project.yaml").exists():
        console.print(
            "[red]Error:[/red] No project.yaml found. Run 'lw init <name>' first or use --project."
        )
        raise typer.Exit(1)
    if not (project_path / WORLD_DB).exists():
        console.print(f"[red]Error:[/red] No {WORLD_DB} found in {project_path}.")
        raise typer.Exit(1)


class TyperConfirmer:
    """Asks the user on the terminal before destructive actions."""

    def __init__(self, assume_yes: bool = False) -> None:
        self.assume_yes = assume_yes

    async def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        return typer.confirm(message, default=False)


@dataclass
class _World:
    path: Path
    project_id: str
    store: WorldGraphStore
    repository: SqliteWorldRepository
    config: ProjectConfig


@contextmanager
def _open_world(project: Path | None, *, assume_yes: bool = False) -> Iterator[_World]:
    """Open the project's world database and wrap it in a graph store."""
    from loreweave.config import ProjectConfigError, load_project_config
    from loreweave.graph import SqliteWorldRepository, WorldGraphStore
    from loreweave.user_config import load_user_defaults

    project_path = project if project is not None else Path()
    _require_project(project_path)
    _configure_project_logging(project_path)

    try:
        config = load_project_config(project_path, defaults=load_user_defaults())
    except ProjectConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    repository = SqliteWorldRepository(project_path / WORLD_DB)
    try:
        project_id = repository.get_meta("project_id")
        if not project_id:
            console.print(f"[red]Error:[/red] {WORLD_DB} has no project id.")
            raise typer.Exit(1)
        store = WorldGraphStore(
            repository,
            confirmer=TyperConfirmer(assume_yes),
            settings=config.graph,
        )
        yield _World(project_path, project_id, store, repository, config)
    finally:
        repository.close()


async def _load(world: _World) -> None:
    if not await world.store.load_graph(world.project_id):
        console.print(f"[red]Error:[/red] Could not load world graph: {world.store.error}")
        raise typer.Exit(1)


def _fail(store: WorldGraphStore, fallback: str) -> typer.Exit:
    """Print the store's last error and return an Exit to raise."""
    if store.last_error is not None:
        console.print(Markdown(store.last_error.to_feedback()))
    else:
        console.print(f"[red]Error:[/red] {fallback}")
    return typer.Exit(1)


def _resolve_entity(store: WorldGraphStore, ref: str) -> Entity:
    """Find an entity by id, or by name when the name is unique."""
    from loreweave.graph import EntityNotFoundError

    entity = store.get_entity(ref)
    if entity is not None:
        return entity

    matches = [n for n in store.nodes if n.name.casefold() == ref.casefold()]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        console.print(f"[red]Error:[/red] '{ref}' is ambiguous. Use one of these ids:")
        for match in matches:
            console.print(f"  [cyan]{match.id}[/cyan] {match.entity_type.value}")
        raise typer.Exit(1)

    error = EntityNotFoundError(ref, available=[n.name for n in store.nodes], context="lookup")
    console.print(Markdown(error.to_feedback()))
    raise typer.Exit(1)


def _names(store: WorldGraphStore) -> dict[str, str]:
    return {n.id: n.name for n in store.nodes}


# =============================================================================
# Project commands
# =============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from loreweave import __version__

    console.print(f"LoreWeave v{__version__}")


def _init_project(name: str, parent_dir: Path) -> Path:
    """Create a project directory with project.yaml and an empty world database.

    Raises:
        typer.Exit: If the directory already exists.
    """
    from loreweave.config import create_default_config, write_project_config
    from loreweave.graph import SqliteWorldRepository
    from loreweave.graph.store import new_id

    parent_dir.mkdir(parents=True, exist_ok=True)

    project_path = parent_dir / name
    if project_path.exists():
        console.print(f"[red]Error:[/red] Directory '{project_path}' already exists")
        raise typer.Exit(1)

    project_path.mkdir(parents=True)
    write_project_config(project_path, create_default_config(name))

    repository = SqliteWorldRepository(project_path / WORLD_DB)
    try:
        repository.set_meta("project_id", new_id())
    finally:
        repository.close()

    return project_path


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name")],
    path: Annotated[
        Path,
        typer.Option("--path", help="Parent directory for the project."),
    ] = Path(),
) -> None:
    """Initialize a new world project.

    Creates a project directory with:
    - project.yaml: Project configuration
    - world.db: The world graph
    """
    project_path = _init_project(name, path)
    log.info("project_created", name=name, path=str(project_path))

    console.print(f"[green]✓[/green] Created project: [bold]{name}[/bold]")
    console.print(f"  Location: {project_path.absolute()}")
    console.print()
    console.print("Next steps:")
    console.print(f"  cd {project_path}")
    console.print('  lw add Character "Your protagonist"')


# =============================================================================
# Entity commands
# =============================================================================


@app.command()
def add(
    entity_type: Annotated[
        EntityType,
        typer.Argument(help="Entity type.", case_sensitive=False),
    ],
    name: Annotated[str, typer.Argument(help="Display name.")],
    sub_type: Annotated[
        str | None,
        typer.Option("--sub-type", help="Subtype, e.g. Region for a Place."),
    ] = None,
    x: Annotated[float | None, typer.Option("--x", help="Canvas x.")] = None,
    y: Annotated[float | None, typer.Option("--y", help="Canvas y.")] = None,
    description: Annotated[
        str | None,
        typer.Option("--description", "-d", help="Free-text description."),
    ] = None,
    tags: Annotated[
        list[str] | None,
        typer.Option("--tag", help="Tag to attach (repeatable)."),
    ] = None,
    project: ProjectOption = None,
) -> None:
    """Add an entity to the world graph."""
    from loreweave.graph.attributes import with_tags

    position = None
    if x is not None or y is not None:
        position = (x or 0.0, y or 0.0)
    attributes = with_tags({}, tags) if tags else None

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            created = await world.store.create_entity(
                world.project_id,
                entity_type,
                name,
                sub_type=sub_type,
                position=position,
                description=description,
                attributes=attributes,
            )
            if created is None:
                raise _fail(world.store, "Could not create entity.")
            console.print(
                f"[green]✓[/green] Added {created.entity_type.value} "
                f"[bold]{created.name}[/bold] [dim]({created.id})[/dim]"
            )

    asyncio.run(_run())


@app.command()
def rename(
    ref: Annotated[str, typer.Argument(help="Entity id or unique name.")],
    name: Annotated[str, typer.Argument(help="New name.")],
    project: ProjectOption = None,
) -> None:
    """Rename an entity."""

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            entity = _resolve_entity(world.store, ref)
            updated = await world.store.update_entity(EntityPatch(id=entity.id, name=name))
            if updated is None:
                raise _fail(world.store, "Could not rename entity.")
            console.print(
                f"[green]✓[/green] Renamed '{entity.name}' to [bold]{updated.name}[/bold]"
            )

    asyncio.run(_run())


@app.command()
def move(
    ref: Annotated[str, typer.Argument(help="Entity id or unique name.")],
    x: Annotated[float, typer.Argument(help="Canvas x.")],
    y: Annotated[float, typer.Argument(help="Canvas y.")],
    project: ProjectOption = None,
) -> None:
    """Move an entity on the canvas."""

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            entity = _resolve_entity(world.store, ref)
            if not await world.store.move_entity(entity.id, x, y):
                raise _fail(world.store, "Could not move entity.")
            console.print(
                f"[green]✓[/green] Moved [bold]{entity.name}[/bold] to ({round(x)}, {round(y)})"
            )

    asyncio.run(_run())


@app.command()
def delete(
    ref: Annotated[str, typer.Argument(help="Entity id or unique name.")],
    yes: YesOption = False,
    project: ProjectOption = None,
) -> None:
    """Delete an entity and its relations."""

    async def _run() -> None:
        with _open_world(project, assume_yes=yes) as world:
            await _load(world)
            entity = _resolve_entity(world.store, ref)
            if not await world.store.delete_entity(entity.id):
                if world.store.last_error is None:
                    console.print("[dim]Cancelled.[/dim]")
                    return
                raise _fail(world.store, "Could not delete entity.")
            console.print(f"[green]✓[/green] Deleted [bold]{entity.name}[/bold]")

    asyncio.run(_run())


# =============================================================================
# Relation commands
# =============================================================================


@app.command()
def connect(
    source: Annotated[str, typer.Argument(help="Source entity id or unique name.")],
    target: Annotated[str, typer.Argument(help="Target entity id or unique name.")],
    relation: Annotated[
        RelationKind | None,
        typer.Option("--relation", "-r", help="Relation kind (default: by type pair)."),
    ] = None,
    project: ProjectOption = None,
) -> None:
    """Connect two entities with a relation."""
    from loreweave.graph import allowed_relations

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            src = _resolve_entity(world.store, source)
            dst = _resolve_entity(world.store, target)
            created = await world.store.create_relation(
                {"source_id": src.id, "target_id": dst.id, "relation": relation}
            )
            if created is None:
                exit_ = _fail(world.store, "Could not create relation.")
                options = allowed_relations(src.entity_type, dst.entity_type)
                if options and src.id != dst.id:
                    console.print(f"Allowed: {', '.join(k.value for k in options)}")
                raise exit_
            console.print(
                f"[green]✓[/green] {src.name} [cyan]{created.relation.value}[/cyan] {dst.name} "
                f"[dim]({created.id})[/dim]"
            )

    asyncio.run(_run())


@app.command()
def unlink(
    relation_id: Annotated[str, typer.Argument(help="Relation id.")],
    yes: YesOption = False,
    project: ProjectOption = None,
) -> None:
    """Delete a relation."""

    async def _run() -> None:
        with _open_world(project, assume_yes=yes) as world:
            await _load(world)
            if not await world.store.delete_relation(relation_id):
                if world.store.last_error is None:
                    console.print("[dim]Cancelled.[/dim]")
                    return
                raise _fail(world.store, "Could not delete relation.")
            console.print(f"[green]✓[/green] Deleted relation [dim]{relation_id}[/dim]")

    asyncio.run(_run())


# =============================================================================
# Views
# =============================================================================


@app.command("list")
def list_(
    types: Annotated[
        list[str] | None,
        typer.Option("--type", "-t", help="Show only this type or subtype (repeatable)."),
    ] = None,
    relations: Annotated[
        list[RelationKind] | None,
        typer.Option("--relation", "-r", help="Show only this relation kind (repeatable)."),
    ] = None,
    search: Annotated[
        str,
        typer.Option("--search", "-s", help="Case-insensitive name search."),
    ] = "",
    tags: Annotated[
        list[str] | None,
        typer.Option("--tag", help="Require this tag (repeatable)."),
    ] = None,
    descriptions: Annotated[
        bool,
        typer.Option("--descriptions", help="Also search descriptions."),
    ] = False,
    project: ProjectOption = None,
) -> None:
    """List entities grouped by type, and the relations between them."""

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            store = world.store
            store.set_filter(
                entity_types=frozenset(types or ()),
                relation_kinds=frozenset(relations or ()),
                search_query=search,
                tags=frozenset(tags or ()),
                match_description=descriptions,
            )
            visible = store.visible_graph()

            if not visible.nodes:
                console.print("[dim]No matching entities.[/dim]")
            for entity_type, members in store.grouped_nodes().items():
                table = Table(title=f"{entity_type.value} ({len(members)})")
                table.add_column("Name", style="bold")
                table.add_column("Subtype", style="cyan")
                table.add_column("ID", style="dim")
                for node in members:
                    table.add_row(node.name, node.sub_type or "", node.id)
                console.print(table)

            if visible.edges:
                names = _names(store)
                table = Table(title=f"Relations ({len(visible.edges)})")
                table.add_column("Source", style="bold")
                table.add_column("Relation", style="cyan")
                table.add_column("Target", style="bold")
                table.add_column("ID", style="dim")
                for edge in visible.edges:
                    table.add_row(
                        names.get(edge.source_id, edge.source_id),
                        edge.relation.value,
                        names.get(edge.target_id, edge.target_id),
                        edge.id,
                    )
                console.print(table)

            if store.suggested_view_mode is ViewMode.EVENT_CHAIN:
                console.print(
                    "[dim]Most entities are events; an event-chain view may read better.[/dim]"
                )

    asyncio.run(_run())


@app.command()
def layout(project: ProjectOption = None) -> None:
    """Show the resolved canvas position of every entity."""
    from loreweave.graph.attributes import get_graph_position

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            positions = world.store.positions()

            table = Table(title="Layout")
            table.add_column("Name", style="bold")
            table.add_column("Type", style="cyan")
            table.add_column("X", justify="right")
            table.add_column("Y", justify="right")
            table.add_column("Source", style="dim")
            for node in world.store.nodes:
                pos = positions[node.id]
                if node.position_x != 0 or node.position_y != 0:
                    source = "stored"
                elif get_graph_position(node.attributes) is not None:
                    source = "attributes"
                else:
                    source = "fallback"
                table.add_row(
                    node.name,
                    node.entity_type.value,
                    f"{pos.x:g}",
                    f"{pos.y:g}",
                    source,
                )
            console.print(table)

    asyncio.run(_run())


@app.command()
def stale(project: ProjectOption = None) -> None:
    """List relations whose endpoint types changed after they were created."""

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            flagged = world.store.stale_relations()
            if not flagged:
                console.print("[green]✓[/green] No stale relations")
                return

            names = _names(world.store)
            types = {n.id: n.entity_type.value for n in world.store.nodes}
            table = Table(title=f"Stale relations ({len(flagged)})")
            table.add_column("Relation", style="cyan")
            table.add_column("Source")
            table.add_column("Target")
            table.add_column("ID", style="dim")
            for edge in flagged:
                table.add_row(
                    edge.relation.value,
                    f"{names[edge.source_id]} "
                    f"({edge.source_type.value} → {types[edge.source_id]})",
                    f"{names[edge.target_id]} "
                    f"({edge.target_type.value} → {types[edge.target_id]})",
                    edge.id,
                )
            console.print(table)

    asyncio.run(_run())


def _read_chapters(chapters_dir: Path, project_id: str) -> list[Chapter]:
    """Read chapter files in name order; the file stem is the title."""
    files = sorted(
        p for p in chapters_dir.iterdir() if p.is_file() and p.suffix.lower() in CHAPTER_SUFFIXES
    )
    return [
        Chapter(
            id=p.name,
            project_id=project_id,
            title=p.stem,
            content=p.read_text(encoding="utf-8"),
            order=index,
        )
        for index, p in enumerate(files)
    ]


@app.command()
def mentions(
    ref: Annotated[str, typer.Argument(help="Entity id or unique name.")],
    chapters: Annotated[
        Path,
        typer.Option(
            "--chapters",
            "-c",
            help="Directory of chapter files (.md, .txt, .html).",
            exists=True,
            file_okay=False,
        ),
    ],
    project: ProjectOption = None,
) -> None:
    """Show manuscript passages that mention an entity."""
    from loreweave.graph import ChapterMentionSearch, MentionResolver

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            entity = _resolve_entity(world.store, ref)
            source = ChapterMentionSearch(
                _read_chapters(chapters, world.project_id),
                world.repository,
                appearances=world.repository,
                context_radius=world.config.mentions.context_radius,
                limit=world.config.mentions.limit,
            )
            resolver = MentionResolver(source, world.store)
            try:
                world.store.select_node(entity.id)
                found = await resolver.refresh()
            finally:
                resolver.close()

            if not found:
                console.print(f"[dim]No mentions of {entity.name}.[/dim]")
                return

            table = Table(title=f"Mentions of {entity.name} ({len(found)})")
            table.add_column("Chapter", style="cyan")
            table.add_column("Context")
            table.add_column("Source", style="dim")
            for mention in found:
                table.add_row(mention.chapter_title, mention.context, mention.source.value)
            console.print(table)

    asyncio.run(_run())


@app.command()
def appear(
    ref: Annotated[str, typer.Argument(help="Character or term id or unique name.")],
    chapter: Annotated[str, typer.Argument(help="Chapter id (the chapter file name).")],
    position: Annotated[
        int | None,
        typer.Option("--position", "-p", help="Character offset in the chapter text."),
    ] = None,
    context: Annotated[
        str | None,
        typer.Option("--context", help="Passage to show for this appearance."),
    ] = None,
    project: ProjectOption = None,
) -> None:
    """Record that a character or term appears in a chapter."""
    from loreweave.graph import WorldGraphError

    async def _run() -> None:
        with _open_world(project) as world:
            await _load(world)
            entity = _resolve_entity(world.store, ref)
            try:
                await world.repository.record_appearance(
                    entity.id, chapter, position=position, context=context
                )
            except WorldGraphError as e:
                console.print(Markdown(e.to_feedback()))
                raise typer.Exit(1) from None
            console.print(f"[green]✓[/green] Recorded [bold]{entity.name}[/bold] in {chapter}")

    asyncio.run(_run())


if __name__ == "__main__":
    app()
