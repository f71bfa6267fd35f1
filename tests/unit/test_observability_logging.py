"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

import loreweave.observability.logging as log_module
from loreweave.observability import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _reset_file_logging() -> Iterator[None]:
    yield
    close_file_logging()


def test_default_verbosity_is_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_verbose_opens_root_to_debug() -> None:
    """Any verbosity opens the root logger; the console handler filters."""
    configure_logging(verbosity=1)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert root_logger.handlers[0].level == logging.INFO


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert hasattr(logger, "warning")


def test_asyncio_logger_quieted() -> None:
    """asyncio chatter stays at WARNING even at full verbosity."""
    configure_logging(verbosity=2)

    assert logging.getLogger("asyncio").level == logging.WARNING


def test_file_logging_creates_logs_dir(tmp_path: Path) -> None:
    """File logging writes under {project}/logs."""
    configure_logging(verbosity=0, log_to_file=True, project_path=tmp_path)

    assert (tmp_path / "logs").is_dir()
    assert get_logs_dir() == tmp_path / "logs"


def test_no_logs_dir_without_flag(tmp_path: Path) -> None:
    """Without log_to_file no directory is created."""
    configure_logging(verbosity=0, log_to_file=False, project_path=tmp_path)

    assert not (tmp_path / "logs").exists()


def test_file_logging_requires_project_path() -> None:
    """log_to_file=True without project_path raises ValueError."""
    with pytest.raises(ValueError, match="project_path is required"):
        configure_logging(verbosity=0, log_to_file=True, project_path=None)


def test_reconfiguration_closes_previous_handler(tmp_path: Path) -> None:
    """Reconfiguring logging closes the earlier file handler."""
    configure_logging(verbosity=0, log_to_file=True, project_path=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0, log_to_file=True, project_path=tmp_path)

    assert first_handler.stream is None or first_handler.stream.closed
    assert log_module._file_handler is not None


def test_jsonl_entries_carry_event_fields(tmp_path: Path) -> None:
    """Structured fields land as top-level keys in debug.jsonl."""
    configure_logging(verbosity=2, log_to_file=True, project_path=tmp_path)

    get_logger("test.world").info("entity_created", entity_id="alice", relations=2)
    close_file_logging()

    entries = [
        json.loads(line)
        for line in (tmp_path / "logs" / "debug.jsonl").read_text().splitlines()
    ]
    entry = next(e for e in entries if e.get("message") == "entity_created")
    assert entry["entity_id"] == "alice"
    assert entry["relations"] == 2
    assert entry["level"] == "INFO"
