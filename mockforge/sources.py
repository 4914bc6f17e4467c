"""
Reference document discovery and request assembly.

Reference papers are attached to the request as binary parts (PDF, images)
or inline text (Markdown, plain text). The request is laid out as:

    system prompt
    --- REFERENCE PYQ DOCUMENTS ---
    <previous-year papers>
    --- REFERENCE MOCK TEST DOCUMENTS ---
    <reference mocks>
    --- USER INSTRUCTIONS ---
    <user prompt>
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from mockforge.errors import ConfigurationError

MAX_FILE_BYTES = 20 * 1024 * 1024

BINARY_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}
TEXT_TYPES = {
    ".md": "text/markdown",
    ".txt": "text/plain",
}
SUPPORTED_SUFFIXES = frozenset(BINARY_TYPES) | frozenset(TEXT_TYPES)

OUTPUT_SUFFIXES = frozenset({".pptx", ".pdf", ".json"})


@dataclass(frozen=True)
class ContentPart:
    """One element of a generation request: text or a binary attachment."""

    text: str | None = None
    data: bytes | None = None
    mime_type: str | None = None
    source: str = ""

    @classmethod
    def from_text(cls, text: str, source: str = "") -> ContentPart:
        return cls(text=text, source=source)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, source: str = "") -> ContentPart:
        return cls(data=data, mime_type=mime_type, source=source)

    @property
    def is_binary(self) -> bool:
        return self.data is not None


# =============================================================================
# Discovery
# =============================================================================


def find_reference_files(directory: str | Path) -> list[Path]:
    """
    Recursively find supported reference files.

    Args:
        directory: Directory to scan

    Returns:
        Sorted file paths

    Raises:
        ConfigurationError: If the directory does not exist
    """
    root = Path(directory)
    if not root.is_dir():
        raise ConfigurationError(f"Input directory not found: {root}")

    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file() and path.suffix.lower() in SUPPORTED_SUFFIXES
    )


def load_reference_parts(
    paths: list[Path],
    max_bytes: int = MAX_FILE_BYTES,
) -> list[ContentPart]:
    """Read reference files into content parts, skipping oversized or unreadable ones."""
    parts: list[ContentPart] = []
    for path in paths:
        try:
            size = path.stat().st_size
            if size > max_bytes:
                logger.warning(
                    f"Skipping {path.name}: {size / 1024 / 1024:.1f}MB exceeds "
                    f"{max_bytes / 1024 / 1024:.0f}MB limit"
                )
                continue

            suffix = path.suffix.lower()
            if suffix in TEXT_TYPES:
                text = path.read_text(encoding="utf-8")
                parts.append(ContentPart.from_text(f"[{path.name}]\n{text}", source=str(path)))
            else:
                parts.append(
                    ContentPart.from_bytes(path.read_bytes(), BINARY_TYPES[suffix], source=str(path))
                )
            logger.debug(f"Loaded {path.name} ({size / 1024:.1f}KB)")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping {path.name}: {e}")
    return parts


def read_prompt(path: str | Path) -> str:
    """Read the user prompt file; it must exist and be non-empty."""
    prompt_file = Path(path)
    try:
        prompt = prompt_file.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigurationError(f"Cannot read prompt file {prompt_file}: {e}") from e
    if not prompt:
        raise ConfigurationError(f"Prompt file is empty: {prompt_file}")
    return prompt


def build_request_contents(
    system_prompt: str,
    pyq_parts: list[ContentPart],
    reference_parts: list[ContentPart],
    user_prompt: str,
) -> list[ContentPart]:
    """Lay out the request contents in the fixed section order."""
    if not pyq_parts and not reference_parts:
        raise ConfigurationError("No usable reference files were found")

    return [
        ContentPart.from_text(system_prompt, source="system"),
        ContentPart.from_text("--- REFERENCE PYQ DOCUMENTS ---"),
        *pyq_parts,
        ContentPart.from_text("--- REFERENCE MOCK TEST DOCUMENTS ---"),
        *reference_parts,
        ContentPart.from_text("--- USER INSTRUCTIONS ---"),
        ContentPart.from_text(user_prompt, source="user"),
    ]


# =============================================================================
# Output naming
# =============================================================================


def output_base_for(output: str | Path, index: int, total: int) -> Path:
    """
    Destination for mock ``index`` of ``total``, without extension.

    A single mock uses the output name as given; several get a zero-padded
    ordinal suffix (``mock_01`` .. ``mock_12``).
    """
    base = Path(output)
    if base.suffix.lower() in OUTPUT_SUFFIXES:
        base = base.with_suffix("")
    if total <= 1:
        return base
    padded = str(index).zfill(len(str(total)))
    return base.with_name(f"{base.name}_{padded}")


def debug_path_for(output_base: Path, label: str, suffix: str) -> Path:
    """Debug artifact path next to an output, e.g. ``mock_01_debug_attempt2.txt``."""
    name = f"{output_base.name}_debug" if not label else f"{output_base.name}_debug_{label}"
    return output_base.with_name(f"{name}{suffix}")
