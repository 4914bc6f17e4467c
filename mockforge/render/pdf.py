"""
PDF renderer (reportlab).

Layout: exam header and details, instructions, sections with their data
tables, charts, questions and options, then the answer key with solution
steps on a new page. Charts are drawn with reportlab.graphics.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from reportlab.graphics.charts.barcharts import VerticalBarChart
from reportlab.graphics.charts.doughnut import Doughnut
from reportlab.graphics.charts.legends import Legend
from reportlab.graphics.charts.linecharts import HorizontalLineChart
from reportlab.graphics.charts.piecharts import Pie
from reportlab.graphics.shapes import Drawing, String
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, StyleSheet1, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import (
    KeepTogether,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from mockforge.generation.schema import EXAM_SCHEMA, DocumentSchema
from mockforge.render.view import ChartView, GroupView, QuestionView, build_view

CHART_WIDTH = 16 * cm
CHART_HEIGHT = 8 * cm
SERIES_COLORS = [
    colors.HexColor("#2E86AB"),
    colors.HexColor("#A23B72"),
    colors.HexColor("#F18F01"),
    colors.HexColor("#C73E1D"),
    colors.HexColor("#3B1F2B"),
    colors.HexColor("#6A994E"),
]


def _escape(text: str) -> str:
    """Escape markup characters so Paragraph treats them as literal text."""
    return (text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def get_exam_styles() -> StyleSheet1:
    """Paragraph styles for the exam document."""
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name="ExamTitle",
        parent=styles["Heading1"],
        fontSize=18,
        alignment=TA_CENTER,
        spaceAfter=8,
        fontName="Helvetica-Bold",
    ))
    styles.add(ParagraphStyle(
        name="ExamDetails",
        parent=styles["Normal"],
        fontSize=11,
        alignment=TA_CENTER,
        spaceAfter=4,
    ))
    styles.add(ParagraphStyle(
        name="SectionHeader",
        parent=styles["Heading2"],
        fontSize=14,
        alignment=TA_LEFT,
        spaceBefore=14,
        spaceAfter=8,
    ))
    styles.add(ParagraphStyle(
        name="Directions",
        parent=styles["Normal"],
        fontSize=10,
        fontName="Helvetica-Oblique",
        spaceAfter=6,
        leading=13,
    ))
    styles.add(ParagraphStyle(
        name="QuestionText",
        parent=styles["Normal"],
        fontSize=11,
        alignment=TA_JUSTIFY,
        spaceAfter=4,
        leading=14,
    ))
    styles.add(ParagraphStyle(
        name="Option",
        parent=styles["Normal"],
        fontSize=10,
        leftIndent=20,
        spaceAfter=2,
    ))
    styles.add(ParagraphStyle(
        name="SolutionStep",
        parent=styles["Normal"],
        fontSize=10,
        leftIndent=20,
        spaceAfter=2,
        leading=13,
    ))
    return styles


def _series_color(i: int) -> Any:
    return SERIES_COLORS[i % len(SERIES_COLORS)]


def _pie(chart: ChartView) -> Any:
    values = chart.series[0].values
    if sum(v for v in values if v > 0) <= 0:
        return None
    plot = Doughnut() if chart.chart_type == "doughnut" else Pie()
    size = CHART_HEIGHT - 40
    plot.x = (CHART_WIDTH - size) / 2
    plot.y = 10
    plot.width = plot.height = size
    plot.data = [max(v, 0.0) for v in values]
    plot.labels = chart.categories if chart.show_values else None
    for i in range(len(values)):
        plot.slices[i].fillColor = _series_color(i)
    return plot


def _category_chart(chart: ChartView) -> Any:
    if chart.chart_type in ("line", "area"):
        plot = HorizontalLineChart()
        for i in range(len(chart.series)):
            plot.lines[i].strokeColor = _series_color(i)
        if chart.show_values:
            plot.lineLabelFormat = "%.4g"
    else:
        plot = VerticalBarChart()
        for i in range(len(chart.series)):
            plot.bars[i].fillColor = _series_color(i)
        if chart.show_values:
            plot.barLabelFormat = "%.4g"
            plot.barLabels.nudge = 6
            plot.barLabels.fontSize = 7

    values = [v for series in chart.series for v in series.values]
    lowest = min(0.0, min(values))
    highest = max(values)
    plot.x = 40
    plot.y = 50
    plot.width = CHART_WIDTH - 60
    plot.height = CHART_HEIGHT - 80
    plot.data = [tuple(series.values) for series in chart.series]
    plot.categoryAxis.categoryNames = chart.categories
    plot.categoryAxis.labels.fontSize = 8
    plot.valueAxis.valueMin = lowest
    plot.valueAxis.valueMax = highest if highest > lowest else lowest + 1
    plot.valueAxis.labels.fontSize = 8
    return plot


def draw_chart(chart: ChartView) -> Drawing | None:
    """Draw a chart for the PDF, or None when a pie chart has nothing to show."""
    drawing = Drawing(CHART_WIDTH, CHART_HEIGHT)
    if chart.is_pie:
        plot = _pie(chart)
        if plot is None:
            return None
        drawing.add(plot)
    else:
        drawing.add(_category_chart(chart))
        if chart.show_legend and len(chart.series) > 1:
            legend = Legend()
            legend.x = 40
            legend.y = 12
            legend.fontSize = 8
            legend.columnMaximum = 1
            legend.alignment = "right"
            legend.colorNamePairs = [
                (_series_color(i), series.name) for i, series in enumerate(chart.series)
            ]
            drawing.add(legend)

    if chart.title:
        drawing.add(String(
            CHART_WIDTH / 2,
            CHART_HEIGHT - 12,
            chart.title,
            textAnchor="middle",
            fontName="Helvetica-Bold",
            fontSize=10,
        ))
    return drawing


class PdfRenderer:
    suffix = ".pdf"

    def __init__(self, schema: DocumentSchema = EXAM_SCHEMA):
        self.schema = schema

    def render(self, document: dict[str, Any], output_path: Path) -> Path:
        view = build_view(document, self.schema)
        styles = get_exam_styles()
        story: list[Any] = [Paragraph(_escape(view.title or "Mock Test"), styles["ExamTitle"])]
        story.extend(Paragraph(_escape(line), styles["ExamDetails"]) for line in view.details)
        story.append(Spacer(1, 0.4 * cm))

        if view.instructions:
            story.append(Paragraph(_escape(view.instructions_title), styles["SectionHeader"]))
            story.extend(
                Paragraph(f"{i}. {_escape(point)}", styles["Normal"])
                for i, point in enumerate(view.instructions, start=1)
            )

        for section in view.sections:
            story.append(Paragraph(_escape(section.title), styles["SectionHeader"]))
            for group in section.groups:
                story.extend(self._group(group, styles))

        questions = view.questions()
        if questions:
            story.append(PageBreak())
            story.append(Paragraph("Answer Key", styles["ExamTitle"]))
            for question in questions:
                story.extend(self._answer(question, styles))

        doc = SimpleDocTemplate(
            str(output_path),
            pagesize=A4,
            leftMargin=2 * cm,
            rightMargin=2 * cm,
            topMargin=2 * cm,
            bottomMargin=2 * cm,
            title=view.title,
        )
        doc.build(story)
        return output_path

    def _group(self, group: GroupView, styles: StyleSheet1) -> list[Any]:
        flowables: list[Any] = []
        if group.directions_title:
            flowables.append(Paragraph(f"<b>{_escape(group.directions_title)}</b>", styles["Directions"]))
        if group.directions:
            flowables.append(Paragraph(_escape(group.directions), styles["Directions"]))
        if any(group.table_rows):
            if group.data_title:
                flowables.append(Paragraph(f"<b>{_escape(group.data_title)}</b>", styles["Directions"]))
            flowables.append(self._table(group))
        if group.chart is not None:
            drawing = draw_chart(group.chart)
            if drawing is not None:
                flowables.extend([Spacer(1, 0.2 * cm), drawing, Spacer(1, 0.3 * cm)])

        for question in group.questions:
            block = [
                Paragraph(
                    f"<b>Q{_escape(question.number)}.</b> {_escape(question.text)}",
                    styles["QuestionText"],
                )
            ]
            block.extend(
                Paragraph(f"({_escape(label)}) {_escape(text)}", styles["Option"])
                for label, text in question.options
            )
            block.append(Spacer(1, 0.2 * cm))
            flowables.append(KeepTogether(block))
        return flowables

    def _table(self, group: GroupView) -> Table:
        rows = ([group.table_headers] if group.table_headers else []) + group.table_rows
        width = max(len(row) for row in rows)
        data = [list(row) + [""] * (width - len(row)) for row in rows]
        table = Table(data, hAlign="LEFT")
        style = [
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
        ]
        if group.table_headers:
            style.append(("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey))
        table.setStyle(TableStyle(style))
        return table

    def _answer(self, question: QuestionView, styles: StyleSheet1) -> list[Any]:
        flowables: list[Any] = [
            Paragraph(
                f"<b>Q{_escape(question.number)}: {_escape(question.answer or 'N/A')}</b>",
                styles["QuestionText"],
            )
        ]
        flowables.extend(Paragraph(_escape(step), styles["SolutionStep"]) for step in question.steps)
        return flowables
