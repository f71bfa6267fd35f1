"""Tests for project and user configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from loreweave.config import (
    DEFAULT_CONTEXT_RADIUS,
    DEFAULT_MENTION_LIMIT,
    PROJECT_FILE,
    GraphSettings,
    MentionSettings,
    ProjectConfig,
    ProjectConfigError,
    create_default_config,
    load_project_config,
    write_project_config,
)
from loreweave.user_config import load_user_defaults

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOREWEAVE_ALLOW_SELF_LOOPS", raising=False)
    monkeypatch.delenv("LOREWEAVE_MENTION_LIMIT", raising=False)


# --- Settings sections ---


class TestGraphSettings:
    """Tests for the graph: section."""

    def test_defaults(self) -> None:
        """Self-loops are off by default."""
        settings = GraphSettings.from_dict({})
        assert settings.allow_self_loops is False
        assert settings.pending_timeout == 10.0

    def test_from_dict(self) -> None:
        """File values are read."""
        settings = GraphSettings.from_dict({"allow_self_loops": True, "pending_timeout": 3})
        assert settings.allow_self_loops is True
        assert settings.pending_timeout == 3.0

    @pytest.mark.parametrize(("raw", "expected"), [("1", True), ("yes", True), ("off", False)])
    def test_env_overrides_file(
        self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool
    ) -> None:
        """LOREWEAVE_ALLOW_SELF_LOOPS wins over project.yaml."""
        monkeypatch.setenv("LOREWEAVE_ALLOW_SELF_LOOPS", raw)
        settings = GraphSettings.from_dict({"allow_self_loops": not expected})
        assert settings.allow_self_loops is expected


class TestMentionSettings:
    """Tests for the mentions: section."""

    def test_defaults(self) -> None:
        """Defaults match the module constants."""
        settings = MentionSettings.from_dict({})
        assert settings.context_radius == DEFAULT_CONTEXT_RADIUS
        assert settings.limit == DEFAULT_MENTION_LIMIT

    def test_env_limit(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """LOREWEAVE_MENTION_LIMIT wins over the file value."""
        monkeypatch.setenv("LOREWEAVE_MENTION_LIMIT", "7")
        assert MentionSettings.from_dict({"limit": 50}).limit == 7


# --- ProjectConfig ---


class TestProjectConfig:
    """Tests for ProjectConfig."""

    def test_from_dict_minimal(self) -> None:
        """Missing sections fall back to defaults."""
        config = ProjectConfig.from_dict({"name": "saga"})

        assert config.name == "saga"
        assert config.version == 1
        assert config.graph == GraphSettings()
        assert config.mentions == MentionSettings()

    def test_project_overrides_user_defaults_per_key(self) -> None:
        """Project values win key by key; other user defaults survive."""
        config = ProjectConfig.from_dict(
            {"name": "saga", "mentions": {"limit": 5}},
            defaults={"mentions": {"limit": 20, "context_radius": 12}},
        )

        assert config.mentions.limit == 5
        assert config.mentions.context_radius == 12

    def test_to_dict_round_trips(self) -> None:
        """to_dict output parses back to an equal config."""
        original = ProjectConfig(name="saga", graph=GraphSettings(allow_self_loops=True))
        assert ProjectConfig.from_dict(original.to_dict()) == original

    def test_create_default_config(self) -> None:
        """The default config only carries the name."""
        assert create_default_config("saga") == ProjectConfig(name="saga")


class TestLoadProjectConfig:
    """Tests for reading project.yaml."""

    def test_write_then_load(self, tmp_path: Path) -> None:
        """A written config loads back."""
        path = write_project_config(tmp_path, ProjectConfig(name="saga"))

        assert path == tmp_path / PROJECT_FILE
        assert load_project_config(tmp_path).name == "saga"

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing project.yaml raises ProjectConfigError."""
        with pytest.raises(ProjectConfigError, match="File not found"):
            load_project_config(tmp_path)

    def test_empty_file(self, tmp_path: Path) -> None:
        """An empty project.yaml is an error."""
        (tmp_path / PROJECT_FILE).write_text("")
        with pytest.raises(ProjectConfigError, match="Empty file"):
            load_project_config(tmp_path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Parse errors are wrapped with the file path."""
        (tmp_path / PROJECT_FILE).write_text("name: [unclosed\n")
        with pytest.raises(ProjectConfigError) as exc_info:
            load_project_config(tmp_path)
        assert exc_info.value.path == tmp_path / PROJECT_FILE


# --- User config ---


class TestUserDefaults:
    """Tests for ~/.config/loreweave/config.yaml."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """No file means no defaults."""
        assert load_user_defaults(tmp_path) == {}

    def test_reads_known_sections(self, tmp_path: Path) -> None:
        """Only graph and mentions mappings are picked up."""
        (tmp_path / "config.yaml").write_text(
            "graph:\n  allow_self_loops: true\nmentions:\n  limit: 3\nproviders: x\n"
        )

        defaults = load_user_defaults(tmp_path)

        assert defaults == {"graph": {"allow_self_loops": True}, "mentions": {"limit": 3}}

    def test_malformed_yaml_is_ignored(self, tmp_path: Path) -> None:
        """Unparseable user config is logged and ignored."""
        (tmp_path / "config.yaml").write_text("graph: [unclosed\n")
        assert load_user_defaults(tmp_path) == {}

    def test_feeds_project_config(self, tmp_path: Path) -> None:
        """User defaults apply where project.yaml is silent."""
        (tmp_path / "config.yaml").write_text("graph:\n  allow_self_loops: true\n")
        (tmp_path / PROJECT_FILE).write_text("name: saga\n")

        config = load_project_config(tmp_path, defaults=load_user_defaults(tmp_path))

        assert config.graph.allow_self_loops is True
