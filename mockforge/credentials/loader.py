"""Load API keys from a newline-delimited file."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from mockforge.errors import ConfigurationError

MIN_KEY_LENGTH = 10


def parse_credentials(text: str, source: str = "<text>") -> list[str]:
    """
    Parse key file content.

    Blank lines and lines starting with ``#`` are ignored. Keys shorter than
    ten characters are rejected as obvious copy/paste mistakes.

    Raises:
        ConfigurationError: On a malformed key or when no key is present
    """
    keys: list[str] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        entry = line.strip()
        if not entry or entry.startswith("#"):
            continue
        if len(entry) < MIN_KEY_LENGTH:
            raise ConfigurationError(
                f"{source}:{line_number}: API key appears to be too short"
            )
        keys.append(entry)

    if not keys:
        raise ConfigurationError(f"No valid API keys found in {source}")
    return keys


def load_credentials(path: str | Path, fallback_key: str | None = None) -> list[str]:
    """
    Read API keys from ``path``.

    Args:
        path: Key file, one key per line
        fallback_key: Single key to use when the file does not exist

    Returns:
        Keys in file order

    Raises:
        ConfigurationError: If the file is missing (and no fallback), unreadable or empty
    """
    key_file = Path(path)
    if not key_file.exists():
        if fallback_key and fallback_key.strip():
            logger.info(f"{key_file} not found; using GEMINI_API_KEY from the environment")
            return parse_credentials(fallback_key, source="GEMINI_API_KEY")
        raise ConfigurationError(f"API key file not found: {key_file}")

    try:
        content = key_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read API key file {key_file}: {e}") from e

    keys = parse_credentials(content, source=str(key_file))
    logger.info(f"Loaded {len(keys)} API key(s) from {key_file}")
    return keys
