"""Command line interface for MockForge."""

from mockforge.cli.main import app, run

__all__ = ["app", "run"]
