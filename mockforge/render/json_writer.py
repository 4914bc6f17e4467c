"""Write the assembled document as pretty-printed JSON."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any


class JsonRenderer:
    suffix = ".json"

    def __init__(self, indent: int = 2):
        self.indent = indent

    def render(self, document: dict[str, Any], output_path: Path) -> Path:
        output_path.write_text(
            json.dumps(document, indent=self.indent, ensure_ascii=False),
            encoding="utf-8",
        )
        return output_path
