"""LoreWeave: world-graph engine for fiction writers."""

__version__ = "0.3.0"
