"""
Response assembly: turn raw model text into one validated document.

Model output is noisy. It arrives wrapped in Markdown fences, carries stray
control characters, gets cut off mid-object when the output token limit is
hit, and for large mocks has to be requested in several parts. The assembler
handles each of these:

1. ``clean``: strip fences and control characters.
2. ``parse``: ``json.loads``, with one boundary-recovery attempt for
   truncated output.
3. ``validate_shape``: check required fields against a ``DocumentSchema``.
4. ``count_items`` / ``merge``: fold continuation parts into the document.
"""

from __future__ import annotations

import copy
import json
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any

from json_repair import repair_json
from loguru import logger

from mockforge.errors import MalformedResponse, SchemaViolation
from mockforge.generation.schema import EXAM_SCHEMA, DocumentSchema, FieldRequirement

_FENCE_OPEN_RE = re.compile(r"^```[\w+-]*[ \t]*\r?\n?")
_FENCE_CLOSE_RE = re.compile(r"\r?\n?```$")
# Tab, LF and CR are kept: they are valid JSON whitespace
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_LINEBREAK_RE = re.compile(r"[\r\n\t]+")

SAMPLE_CHARS = 500


def _sample(text: str, limit: int = SAMPLE_CHARS) -> str:
    return text if len(text) <= limit else f"{text[:limit]}... [{len(text) - limit} more chars]"


def recover_boundaries(text: str) -> str | None:
    """
    Best-effort repair of truncated or sloppy JSON.

    Slices from the first ``{`` to the last ``}`` (or to the end of the text
    when nothing closes after the first ``{``) and hands the slice to
    ``json_repair``, which closes open strings and delimiters and drops
    trailing commas.

    Returns:
        Repaired text, or None when the text contains no object at all
    """
    start = text.find("{")
    if start == -1:
        return None
    end = text.rfind("}")
    candidate = text[start:end + 1] if end > start else text[start:]
    return repair_json(candidate)


@dataclass
class ResponsePart:
    """One parsed response cycle."""

    data: dict[str, Any]
    item_count: int


class ResponseAssembler:
    """Cleans, parses, validates and merges model responses for one schema."""

    def __init__(
        self,
        schema: DocumentSchema = EXAM_SCHEMA,
        collapse_whitespace: bool = False,
    ):
        self.schema = schema
        self.collapse_whitespace = collapse_whitespace

    # =========================================================================
    # Cleaning & parsing
    # =========================================================================

    def clean(self, raw_text: str) -> str:
        """
        Strip one enclosing code fence and control characters.

        Only the text around the fence is trimmed; the fenced content is kept
        as is.
        """
        text = (raw_text or "").strip()
        if text.startswith("```"):
            text = _FENCE_OPEN_RE.sub("", text, count=1)
            text = _FENCE_CLOSE_RE.sub("", text, count=1)

        text = _CONTROL_RE.sub("", text)
        if self.collapse_whitespace:
            text = _LINEBREAK_RE.sub(" ", text)
        return text

    def parse(self, candidate: str) -> dict[str, Any]:
        """
        Parse cleaned text into a JSON object.

        Raw newlines inside strings are tolerated. On a decode error, boundary
        recovery is attempted exactly once.

        Raises:
            MalformedResponse: If the text is empty, unrecoverable, or not an object
        """
        if not candidate or not candidate.strip():
            raise MalformedResponse("Empty response received from API")

        try:
            data = json.loads(candidate, strict=False)
        except json.JSONDecodeError as e:
            data = self._recover(candidate, e)

        if not isinstance(data, dict):
            raise MalformedResponse(
                f"Expected a JSON object, got {type(data).__name__}",
                raw_sample=_sample(candidate),
            )
        return data

    def _recover(self, candidate: str, error: json.JSONDecodeError) -> Any:
        logger.debug(f"JSON parse failed ({error}); attempting boundary recovery")
        recovered = recover_boundaries(candidate)
        if recovered is None:
            raise MalformedResponse(
                f"Invalid JSON: {error}",
                original_error=error,
                raw_sample=_sample(candidate),
            )

        try:
            data = json.loads(recovered, strict=False)
        except json.JSONDecodeError as e:
            raise MalformedResponse(
                f"Invalid JSON after recovery: {error}",
                original_error=error,
                raw_sample=_sample(candidate),
            ) from e

        logger.info("Recovered truncated JSON response")
        return data

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_shape(self, data: dict[str, Any], partial: bool = False) -> None:
        """
        Check the document against the schema.

        Args:
            data: Parsed response
            partial: Continuation part; only the sections are required

        Raises:
            SchemaViolation: Naming the first missing or mistyped field
        """
        requirements = self.schema.requirements
        if partial:
            requirements = tuple(
                r for r in requirements if r.name == self.schema.sections_field
            )
        for requirement in requirements:
            self._check(data, requirement, prefix="")

        for i, section in enumerate(self.schema.sections(data)):
            prefix = f"{self.schema.sections_field}[{i}]."
            if not isinstance(section, dict):
                raise SchemaViolation(prefix.rstrip("."), f"Section {i} is not an object")
            for requirement in self.schema.section_requirements:
                self._check(section, requirement, prefix=prefix)

        if self.count_items(data) == 0:
            raise SchemaViolation(
                self.schema.items_field,
                f"No section contains any {self.schema.items_field}",
            )

    @staticmethod
    def _check(obj: dict[str, Any], requirement: FieldRequirement, prefix: str) -> None:
        name = f"{prefix}{requirement.name}"
        value = obj.get(requirement.name)
        if value is None:
            if requirement.required:
                raise SchemaViolation(name)
            return
        if not isinstance(value, requirement.expected_type):
            raise SchemaViolation(name, f"Field '{name}' has type {type(value).__name__}")
        if requirement.non_empty and not value:
            raise SchemaViolation(name, f"Field '{name}' must not be empty")

    # =========================================================================
    # Counting & merging
    # =========================================================================

    def count_items(self, data: dict[str, Any]) -> int:
        return sum(1 for _ in self.schema.items(data))

    def assemble(self, raw_text: str, partial: bool = False) -> ResponsePart:
        """Clean, parse and validate one response."""
        data = self.parse(self.clean(raw_text))
        self.validate_shape(data, partial=partial)
        return ResponsePart(data=data, item_count=self.count_items(data))

    def merge(self, existing: dict[str, Any], part: dict[str, Any]) -> dict[str, Any]:
        """
        Fold a continuation part into the document.

        Sections are matched by title. A matching section gets the new
        part's groups appended in arrival order; unmatched sections are
        appended whole. Item identifiers are not deduplicated.
        """
        merged = copy.deepcopy(existing)
        sections = merged.setdefault(self.schema.sections_field, [])

        for new_section in self.schema.sections(part):
            if not isinstance(new_section, dict):
                continue
            match = self._find_section(sections, self.schema.section_title(new_section))
            if match is None:
                sections.append(copy.deepcopy(new_section))
            elif self.schema.groups_field is None:
                items = new_section.get(self.schema.items_field) or []
                match.setdefault(self.schema.items_field, []).extend(copy.deepcopy(items))
            else:
                groups = self.schema.groups(new_section)
                match.setdefault(self.schema.groups_field, []).extend(copy.deepcopy(groups))
        return merged

    def _find_section(
        self,
        sections: list[dict[str, Any]],
        title: str | None,
    ) -> dict[str, Any] | None:
        if title is None:
            return None
        for section in sections:
            if isinstance(section, dict) and self.schema.section_title(section) == title:
                return section
        return None

    def duplicate_item_ids(self, data: dict[str, Any]) -> list[Any]:
        """Item identifiers that occur more than once."""
        counts = Counter(
            item.get(self.schema.item_id_field)
            for item in self.schema.items(data)
            if isinstance(item, dict)
            and isinstance(item.get(self.schema.item_id_field), (int, str))
        )
        return [item_id for item_id, count in counts.items() if count > 1]
