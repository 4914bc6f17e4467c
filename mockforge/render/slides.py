"""
Slide deck renderer (python-pptx).

Deck layout, in order:
- Title slide with exam details
- Instructions slide
- Per section: a section divider, then per question set an optional
  directions / table slide, an optional chart slide and one slide per
  question
- Answer key: one slide per question with the answer and solution steps
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pptx import Presentation
from pptx.chart.data import CategoryChartData
from pptx.dml.color import RGBColor
from pptx.enum.chart import XL_CHART_TYPE, XL_LEGEND_POSITION
from pptx.util import Inches, Pt

from mockforge.generation.schema import EXAM_SCHEMA, DocumentSchema
from mockforge.render.view import ChartView, DocumentView, GroupView, QuestionView, build_view

SLIDE_WIDTH = Inches(13.333)
SLIDE_HEIGHT = Inches(7.5)
MARGIN = Inches(0.6)
BLANK_LAYOUT = 6

TITLE_COLOR = RGBColor(0x1F, 0x3A, 0x5F)
BODY_COLOR = RGBColor(0x22, 0x22, 0x22)

# "bar" is drawn as vertical columns
CHART_KINDS = {
    "column": XL_CHART_TYPE.COLUMN_CLUSTERED,
    "bar": XL_CHART_TYPE.COLUMN_CLUSTERED,
    "line": XL_CHART_TYPE.LINE_MARKERS,
    "area": XL_CHART_TYPE.AREA,
    "pie": XL_CHART_TYPE.PIE,
    "doughnut": XL_CHART_TYPE.DOUGHNUT,
}


class SlideDeckRenderer:
    suffix = ".pptx"

    def __init__(
        self,
        schema: DocumentSchema = EXAM_SCHEMA,
        background: str | Path | None = None,
    ):
        self.schema = schema
        self.background = Path(background) if background else None
        if self.background is not None and not self.background.is_file():
            raise FileNotFoundError(f"Background image not found: {self.background}")

    def render(self, document: dict[str, Any], output_path: Path) -> Path:
        view = build_view(document, self.schema)
        deck = Presentation()
        deck.slide_width = SLIDE_WIDTH
        deck.slide_height = SLIDE_HEIGHT

        self._title_slide(deck, view)
        if view.instructions:
            self._bullet_slide(deck, view.instructions_title, view.instructions)

        for section in view.sections:
            self._section_slide(deck, section.title)
            for group in section.groups:
                if group.directions or group.table_rows:
                    self._directions_slide(deck, group)
                if group.chart is not None:
                    self._chart_slide(deck, group.chart, group.data_title)
                for question in group.questions:
                    self._question_slide(deck, question)

        questions = view.questions()
        if questions:
            self._section_slide(deck, "Answer Key")
            for question in questions:
                self._answer_slide(deck, question)

        deck.save(str(output_path))
        return output_path

    # =========================================================================
    # Slide builders
    # =========================================================================

    def _new_slide(self, deck: Any) -> Any:
        slide = deck.slides.add_slide(deck.slide_layouts[BLANK_LAYOUT])
        if self.background is not None:
            # Added first so it sits behind everything else
            slide.shapes.add_picture(
                str(self.background), 0, 0, width=deck.slide_width, height=deck.slide_height
            )
        return slide

    def _text_box(
        self,
        slide: Any,
        top: int,
        height: int,
        lines: list[str],
        size: int = 20,
    ) -> None:
        box = slide.shapes.add_textbox(MARGIN, top, SLIDE_WIDTH - 2 * MARGIN, height)
        frame = box.text_frame
        frame.word_wrap = True
        for i, line in enumerate(lines):
            paragraph = frame.paragraphs[0] if i == 0 else frame.add_paragraph()
            paragraph.text = line
            paragraph.font.size = Pt(size)
            paragraph.font.color.rgb = BODY_COLOR
            paragraph.space_after = Pt(6)

    def _heading(self, slide: Any, text: str, size: int = 28) -> None:
        box = slide.shapes.add_textbox(MARGIN, Inches(0.4), SLIDE_WIDTH - 2 * MARGIN, Inches(0.9))
        paragraph = box.text_frame.paragraphs[0]
        paragraph.text = text
        paragraph.font.size = Pt(size)
        paragraph.font.bold = True
        paragraph.font.color.rgb = TITLE_COLOR

    def _title_slide(self, deck: Any, view: DocumentView) -> None:
        slide = self._new_slide(deck)
        box = slide.shapes.add_textbox(MARGIN, Inches(2.3), SLIDE_WIDTH - 2 * MARGIN, Inches(1.4))
        frame = box.text_frame
        frame.word_wrap = True
        paragraph = frame.paragraphs[0]
        paragraph.text = view.title or "Mock Test"
        paragraph.font.size = Pt(40)
        paragraph.font.bold = True
        paragraph.font.color.rgb = TITLE_COLOR
        if view.details:
            self._text_box(slide, Inches(4.0), Inches(2.0), view.details, size=22)

    def _bullet_slide(self, deck: Any, title: str, points: list[str]) -> None:
        slide = self._new_slide(deck)
        self._heading(slide, title)
        self._text_box(slide, Inches(1.4), Inches(5.6), [f"• {p}" for p in points], size=18)

    def _section_slide(self, deck: Any, title: str) -> None:
        slide = self._new_slide(deck)
        box = slide.shapes.add_textbox(MARGIN, Inches(3.0), SLIDE_WIDTH - 2 * MARGIN, Inches(1.2))
        paragraph = box.text_frame.paragraphs[0]
        paragraph.text = title
        paragraph.font.size = Pt(36)
        paragraph.font.bold = True
        paragraph.font.color.rgb = TITLE_COLOR

    def _directions_slide(self, deck: Any, group: GroupView) -> None:
        slide = self._new_slide(deck)
        self._heading(slide, group.directions_title or group.data_title or "Directions", size=24)
        top = Inches(1.3)
        if group.directions:
            self._text_box(slide, top, Inches(1.6), [group.directions], size=16)
            top = Inches(3.0)
        if group.table_rows:
            self._table(slide, top, group)

    def _table(self, slide: Any, top: int, group: GroupView) -> None:
        rows = ([group.table_headers] if group.table_headers else []) + group.table_rows
        columns = max(len(row) for row in rows)
        if columns == 0:
            return
        shape = slide.shapes.add_table(
            len(rows), columns, MARGIN, top, SLIDE_WIDTH - 2 * MARGIN, Inches(0.4) * len(rows)
        )
        table = shape.table
        for r, row in enumerate(rows):
            for c in range(columns):
                cell = table.cell(r, c)
                cell.text = row[c] if c < len(row) else ""
                cell.text_frame.paragraphs[0].font.size = Pt(14)

    def _chart_slide(self, deck: Any, chart: ChartView, fallback_title: str) -> None:
        slide = self._new_slide(deck)
        self._heading(slide, chart.title or fallback_title or "Data", size=24)

        data = CategoryChartData()
        data.categories = chart.categories
        for series in chart.series:
            data.add_series(series.name, series.values)

        frame = slide.shapes.add_chart(
            CHART_KINDS[chart.chart_type],
            MARGIN,
            Inches(1.3),
            SLIDE_WIDTH - 2 * MARGIN,
            Inches(5.8),
            data,
        )
        plot_chart = frame.chart
        plot_chart.has_title = False
        plot_chart.has_legend = chart.show_legend
        if chart.show_legend:
            plot_chart.legend.position = XL_LEGEND_POSITION.BOTTOM
            plot_chart.legend.include_in_layout = False
        if chart.show_values:
            plot = plot_chart.plots[0]
            plot.has_data_labels = True
            plot.data_labels.font.size = Pt(12)

    def _question_slide(self, deck: Any, question: QuestionView) -> None:
        slide = self._new_slide(deck)
        self._heading(slide, f"Question {question.number}", size=24)
        self._text_box(slide, Inches(1.3), Inches(2.4), [question.text], size=20)
        if question.options:
            self._text_box(
                slide,
                Inches(3.9),
                Inches(3.2),
                [f"({label}) {text}" for label, text in question.options],
                size=18,
            )

    def _answer_slide(self, deck: Any, question: QuestionView) -> None:
        slide = self._new_slide(deck)
        self._heading(slide, f"Q{question.number} - Answer: {question.answer or 'N/A'}", size=24)
        if question.steps:
            self._text_box(slide, Inches(1.4), Inches(5.6), question.steps, size=16)
