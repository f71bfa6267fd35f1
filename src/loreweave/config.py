"""Project configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

DEFAULT_PENDING_TIMEOUT = 10.0
DEFAULT_CONTEXT_RADIUS = 48
DEFAULT_MENTION_LIMIT = 100

PROJECT_FILE = "project.yaml"


def _env_flag(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


@dataclass
class GraphSettings:
    """Graph store behaviour.

    Attributes:
        allow_self_loops: Let a relation connect an entity to itself when
            its type pair otherwise has a rule.
        pending_timeout: Seconds before an unconfirmed optimistic position
            is dropped by ``expire_pending``.
    """

    allow_self_loops: bool = False
    pending_timeout: float = DEFAULT_PENDING_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GraphSettings:
        """Create settings from a ``graph:`` config section.

        ``LOREWEAVE_ALLOW_SELF_LOOPS`` overrides the file value.
        """
        allow = _env_flag("LOREWEAVE_ALLOW_SELF_LOOPS")
        return cls(
            allow_self_loops=(
                allow if allow is not None else bool(data.get("allow_self_loops", False))
            ),
            pending_timeout=float(data.get("pending_timeout", DEFAULT_PENDING_TIMEOUT)),
        )


@dataclass
class MentionSettings:
    """Manuscript mention search behaviour.

    Attributes:
        context_radius: Characters of context kept on each side of a match.
        limit: Maximum mentions returned per lookup.
    """

    context_radius: int = DEFAULT_CONTEXT_RADIUS
    limit: int = DEFAULT_MENTION_LIMIT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MentionSettings:
        """Create settings from a ``mentions:`` config section.

        ``LOREWEAVE_MENTION_LIMIT`` overrides the file value.
        """
        limit = _env_int("LOREWEAVE_MENTION_LIMIT")
        return cls(
            context_radius=int(data.get("context_radius", DEFAULT_CONTEXT_RADIUS)),
            limit=limit if limit is not None else int(data.get("limit", DEFAULT_MENTION_LIMIT)),
        )


@dataclass
class ProjectConfig:
    """Configuration for a LoreWeave project."""

    name: str
    version: int = 1
    graph: GraphSettings = field(default_factory=GraphSettings)
    mentions: MentionSettings = field(default_factory=MentionSettings)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        defaults: dict[str, Any] | None = None,
    ) -> ProjectConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary containing config fields.
            defaults: Lower-priority sections (from user config) that project
                values override key by key.

        Returns:
            ProjectConfig instance.
        """
        defaults = defaults or {}
        graph_data = {**dict(defaults.get("graph") or {}), **dict(data.get("graph") or {})}
        mention_data = {
            **dict(defaults.get("mentions") or {}),
            **dict(data.get("mentions") or {}),
        }
        return cls(
            name=data.get("name", "unnamed"),
            version=data.get("version", 1),
            graph=GraphSettings.from_dict(graph_data),
            mentions=MentionSettings.from_dict(mention_data),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the YAML-serializable form written to ``project.yaml``."""
        return {
            "name": self.name,
            "version": self.version,
            "graph": {
                "allow_self_loops": self.graph.allow_self_loops,
                "pending_timeout": self.graph.pending_timeout,
            },
            "mentions": {
                "context_radius": self.mentions.context_radius,
                "limit": self.mentions.limit,
            },
        }


class ProjectConfigError(Exception):
    """Raised when project configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load project config at {path}: {reason}")


def load_project_config(
    project_path: Path,
    defaults: dict[str, Any] | None = None,
) -> ProjectConfig:
    """Load project configuration from project.yaml.

    Args:
        project_path: Path to the project root directory.
        defaults: Optional user-level sections to fall back on.

    Returns:
        ProjectConfig instance.

    Raises:
        ProjectConfigError: If config cannot be loaded.
    """
    config_path = project_path / PROJECT_FILE

    if not config_path.exists():
        raise ProjectConfigError(config_path, "File not found")

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ProjectConfigError(config_path, "Empty file")

        return ProjectConfig.from_dict(dict(data), defaults=defaults)
    except Exception as e:
        if isinstance(e, ProjectConfigError):
            raise
        raise ProjectConfigError(config_path, str(e)) from e


def create_default_config(name: str) -> ProjectConfig:
    """Create a default project configuration named *name*."""
    return ProjectConfig(name=name)


def write_project_config(project_path: Path, config: ProjectConfig) -> Path:
    """Write *config* to ``project.yaml`` under *project_path* and return the file path."""
    config_file = project_path / PROJECT_FILE
    yaml_writer = YAML()
    yaml_writer.default_flow_style = False
    with config_file.open("w", encoding="utf-8") as f:
        yaml_writer.dump(config.to_dict(), f)
    return config_file
