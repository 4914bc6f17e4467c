"""
Explicit descriptions of the JSON documents the model is asked to produce.

Two layouts are supported:

- ``exam``: ``sections[] -> questionSets[] -> questions[]``, used for full
  mocks with named sections (Quant, Verbal, DI...).
- ``question_sets``: ``questionSets[] -> questions[]``, used for short
  data-interpretation sets where every set is its own section.

The assembler reads sections, groups and items only through a schema, so
validation and merging work the same for both layouts.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FieldRequirement:
    """A field that must (or may) appear on a JSON object."""

    name: str
    expected_type: type | tuple[type, ...]
    required: bool = True
    non_empty: bool = False


@dataclass(frozen=True)
class DocumentSchema:
    """Field names and requirements of one document layout."""

    name: str
    title_field: str
    sections_field: str
    section_title_field: str
    items_field: str
    item_id_field: str
    # None when a section holds its items directly
    groups_field: str | None = None
    requirements: tuple[FieldRequirement, ...] = field(default_factory=tuple)
    section_requirements: tuple[FieldRequirement, ...] = field(default_factory=tuple)

    def sections(self, document: dict[str, Any]) -> list[dict[str, Any]]:
        sections = document.get(self.sections_field)
        return sections if isinstance(sections, list) else []

    def groups(self, section: dict[str, Any]) -> list[dict[str, Any]]:
        if self.groups_field is None:
            return [section]
        groups = section.get(self.groups_field)
        return groups if isinstance(groups, list) else []

    def items(self, document: dict[str, Any]) -> Iterator[dict[str, Any]]:
        for section in self.sections(document):
            for group in self.groups(section):
                items = group.get(self.items_field) if isinstance(group, dict) else None
                if isinstance(items, list):
                    yield from items

    def section_title(self, section: dict[str, Any]) -> str | None:
        title = section.get(self.section_title_field)
        return title if isinstance(title, str) else None


EXAM_SCHEMA = DocumentSchema(
    name="exam",
    title_field="examTitle",
    sections_field="sections",
    section_title_field="sectionTitle",
    groups_field="questionSets",
    items_field="questions",
    item_id_field="questionNumber",
    requirements=(
        FieldRequirement("examTitle", str),
        FieldRequirement("examDetails", dict),
        FieldRequirement("instructions", dict, required=False),
        FieldRequirement("sections", list, non_empty=True),
    ),
    section_requirements=(
        FieldRequirement("sectionTitle", str),
        FieldRequirement("questionSets", list),
    ),
)

QUESTION_SET_SCHEMA = DocumentSchema(
    name="question_sets",
    title_field="title",
    sections_field="questionSets",
    section_title_field="setTitle",
    items_field="questions",
    item_id_field="qNum",
    requirements=(
        FieldRequirement("title", str),
        FieldRequirement("totalQuestions", int, required=False),
        FieldRequirement("instructions", list, required=False),
        FieldRequirement("questionSets", list, non_empty=True),
    ),
    section_requirements=(
        FieldRequirement("questions", list),
    ),
)

SCHEMAS = {schema.name: schema for schema in (EXAM_SCHEMA, QUESTION_SET_SCHEMA)}


def get_schema(name: str) -> DocumentSchema:
    """Look up a schema by name."""
    try:
        return SCHEMAS[name]
    except KeyError:
        raise ValueError(
            f"Unknown document schema '{name}' (expected one of: {', '.join(SCHEMAS)})"
        ) from None
