"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from loreweave.graph import InMemoryWorldRepository, WorldGraphStore
from loreweave.models import WorldGraphData
from tests.fixtures.world_fixtures import make_sample_graph


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def sample_graph() -> WorldGraphData:
    """The sample world (see tests/fixtures/world_fixtures.py)."""
    return make_sample_graph()


@pytest.fixture
def repository(sample_graph: WorldGraphData) -> InMemoryWorldRepository:
    """In-memory repository seeded with the sample graph."""
    return InMemoryWorldRepository(sample_graph)


@pytest.fixture
def store(repository: InMemoryWorldRepository) -> WorldGraphStore:
    """Graph store over the seeded repository (not yet loaded)."""
    return WorldGraphStore(repository)
