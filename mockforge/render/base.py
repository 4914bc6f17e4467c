"""Renderer interface shared by every artifact writer."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol


class Renderer(Protocol):
    """Writes one artifact file for an assembled document."""

    suffix: str

    def render(self, document: dict[str, Any], output_path: Path) -> Path:
        """Write the artifact to ``output_path`` and return it; raise on failure."""
        ...
