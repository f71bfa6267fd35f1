"""Observability module for LoreWeave.

Provides structured logging (structlog over rich console and JSONL file handlers).
"""

from loreweave.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
]
