"""
Schema-independent view of an assembled document.

Both document layouts are flattened into the same small tree of dataclasses
so each renderer is written once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from mockforge.generation.schema import EXAM_SCHEMA, DocumentSchema

CHART_TYPES = ("column", "bar", "line", "area", "pie", "doughnut")
PIE_TYPES = ("pie", "doughnut")


@dataclass
class QuestionView:
    number: str
    text: str
    options: list[tuple[str, str]] = field(default_factory=list)
    answer: str = ""
    steps: list[str] = field(default_factory=list)


@dataclass
class SeriesView:
    name: str
    values: list[float] = field(default_factory=list)


@dataclass
class ChartView:
    """
    Chart for a data-interpretation set.

    ``values`` of every series line up with ``categories``. Pie and doughnut
    charts carry a single series.
    """

    chart_type: str
    title: str = ""
    categories: list[str] = field(default_factory=list)
    series: list[SeriesView] = field(default_factory=list)
    show_legend: bool = True
    show_values: bool = True

    @property
    def is_pie(self) -> bool:
        return self.chart_type in PIE_TYPES


@dataclass
class GroupView:
    directions_title: str = ""
    directions: str = ""
    data_title: str = ""
    table_headers: list[str] = field(default_factory=list)
    table_rows: list[list[str]] = field(default_factory=list)
    chart: ChartView | None = None
    questions: list[QuestionView] = field(default_factory=list)


@dataclass
class SectionView:
    title: str
    groups: list[GroupView] = field(default_factory=list)


@dataclass
class DocumentView:
    title: str
    details: list[str] = field(default_factory=list)
    instructions_title: str = "Instructions"
    instructions: list[str] = field(default_factory=list)
    sections: list[SectionView] = field(default_factory=list)

    def questions(self) -> list[QuestionView]:
        return [q for s in self.sections for g in s.groups for q in g.questions]


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _text_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [_text(v) for v in value if v is not None]
    if value:
        return [_text(value)]
    return []


def _details(data: dict[str, Any]) -> list[str]:
    labels = (
        ("totalQuestions", "Total Questions"),
        ("timeAllotted", "Time Allotted"),
        ("timeMinutes", "Time (minutes)"),
        ("maxMarks", "Maximum Marks"),
    )
    return [f"{label}: {data[key]}" for key, label in labels if data.get(key) is not None]


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _aligned_values(entry: dict[str, Any], categories: list[str]) -> list[float]:
    labels = _text_list(entry.get("labels"))
    values = entry.get("values") if isinstance(entry.get("values"), list) else []
    lookup: dict[str, float] = {}
    for label, value in zip(labels, values):
        lookup.setdefault(label, _number(value))
    return [lookup.get(category, 0.0) for category in categories]


def build_chart(chart_data: Any) -> ChartView | None:
    """
    Read a ``chartData`` object into a ``ChartView``.

    Categories come from the first series' labels. Later series are matched
    to them by label, and a missing label counts as 0. Pie and doughnut
    charts keep only the first series. Unknown chart types are drawn as
    column charts.

    Returns:
        The chart, or None when there is no chart type, series or label
    """
    if not isinstance(chart_data, dict):
        return None
    chart_type = _text(chart_data.get("chartType")).strip().lower()
    data = [entry for entry in chart_data.get("data") or [] if isinstance(entry, dict)]
    if not chart_type or not data:
        logger.debug("Skipping chart without a type or data series")
        return None
    if chart_type not in CHART_TYPES:
        logger.debug(f"Unknown chart type '{chart_type}'; drawing a column chart")
        chart_type = "column"

    categories = _text_list(data[0].get("labels"))
    if not categories:
        logger.debug("Skipping chart without labels")
        return None
    if chart_type in PIE_TYPES:
        data = data[:1]

    options = chart_data.get("options") if isinstance(chart_data.get("options"), dict) else {}
    return ChartView(
        chart_type=chart_type,
        title=_text(chart_data.get("title")),
        categories=categories,
        series=[
            SeriesView(
                name=_text(entry.get("name")) or f"Series{i}",
                values=_aligned_values(entry, categories),
            )
            for i, entry in enumerate(data, start=1)
        ],
        show_legend=options.get("showLegend") is not False,
        show_values=options.get("showDataLabels") is not False,
    )


# =============================================================================
# exam layout
# =============================================================================


def _exam_question(item: dict[str, Any]) -> QuestionView:
    solution = item.get("solution") if isinstance(item.get("solution"), dict) else {}
    options = [
        (_text(opt.get("label")), _text(opt.get("text")))
        for opt in item.get("options") or []
        if isinstance(opt, dict)
    ]
    return QuestionView(
        number=_text(item.get("questionNumber")),
        text=_text(item.get("questionText")),
        options=options,
        answer=_text(solution.get("answer")),
        steps=_text_list(solution.get("steps")),
    )


def _exam_group(group: dict[str, Any]) -> GroupView:
    directions = group.get("directions") if isinstance(group.get("directions"), dict) else {}
    table = group.get("tableData") if isinstance(group.get("tableData"), dict) else {}
    chart = build_chart(group.get("chartData"))
    rows = table.get("rows") or []
    return GroupView(
        directions_title=_text(directions.get("title")),
        directions=_text(directions.get("text")),
        data_title=_text(table.get("title")) or (chart.title if chart else ""),
        table_headers=_text_list(table.get("headers")),
        table_rows=[_text_list(row) for row in rows if isinstance(row, list)],
        chart=chart,
        questions=[_exam_question(q) for q in group.get("questions") or [] if isinstance(q, dict)],
    )


def _exam_view(document: dict[str, Any]) -> DocumentView:
    details = document.get("examDetails") if isinstance(document.get("examDetails"), dict) else {}
    instructions = document.get("instructions")
    if isinstance(instructions, dict):
        instructions_title = _text(instructions.get("title")) or "Instructions"
        points = _text_list(instructions.get("points"))
    else:
        instructions_title, points = "Instructions", _text_list(instructions)

    sections = [
        SectionView(
            title=_text(section.get("sectionTitle")),
            groups=[_exam_group(g) for g in section.get("questionSets") or [] if isinstance(g, dict)],
        )
        for section in document.get("sections") or []
        if isinstance(section, dict)
    ]
    return DocumentView(
        title=_text(document.get("examTitle")),
        details=_details(details),
        instructions_title=instructions_title,
        instructions=points,
        sections=sections,
    )


# =============================================================================
# question_sets layout
# =============================================================================


def _set_question(item: dict[str, Any]) -> QuestionView:
    options = [
        (label, _text(item.get(f"opt{label}")))
        for label in "ABCDE"
        if item.get(f"opt{label}") is not None
    ]
    return QuestionView(
        number=_text(item.get("qNum")),
        text=_text(item.get("question")),
        options=options,
        answer=_text(item.get("answer")),
        steps=_text_list(item.get("explanation")),
    )


def _question_set_view(document: dict[str, Any]) -> DocumentView:
    sections = []
    for question_set in document.get("questionSets") or []:
        if not isinstance(question_set, dict):
            continue
        rows = question_set.get("tableRows") or []
        group = GroupView(
            directions=_text(question_set.get("directions")),
            data_title=_text(question_set.get("dataTitle")),
            table_headers=_text_list(question_set.get("tableHeaders")),
            table_rows=[_text_list(row) for row in rows if isinstance(row, list)],
            chart=build_chart(question_set.get("chartData")),
            questions=[
                _set_question(q) for q in question_set.get("questions") or [] if isinstance(q, dict)
            ],
        )
        sections.append(SectionView(title=_text(question_set.get("setTitle")), groups=[group]))

    return DocumentView(
        title=_text(document.get("title")),
        details=_details(document),
        instructions=_text_list(document.get("instructions")),
        sections=sections,
    )


def build_view(document: dict[str, Any], schema: DocumentSchema = EXAM_SCHEMA) -> DocumentView:
    """Flatten a document of either layout into a ``DocumentView``."""
    if schema.name == EXAM_SCHEMA.name:
        return _exam_view(document)
    return _question_set_view(document)
