"""CLI module - Typer application and commands."""

from taskgraph.cli.main import app
from taskgraph.cli import commands  # noqa: F401  (registers depend/tag/graph)

__all__ = ["app"]
