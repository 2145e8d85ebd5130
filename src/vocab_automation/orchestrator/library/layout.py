"""Printable vocabulary test sheets (A4, two columns, grading scale at the end)."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from ...errors import DocumentGenerationError, ValidationError
from ...logging import get_logger
from .constants import (
    A4_GEOMETRY,
    DATE_FORMAT,
    DEFAULT_LABELS,
    GRADE_BANDS,
    DocumentLabels,
    GradeBand,
    PageGeometry,
)
from .grading import GradingScale, calculate_grading_scale
from .models import VocabularyPair

LOG = get_logger("library-layout")

# Page font resource -> embedded Noto Sans face (pymupdf-fonts); covers ’ „ “ – €.
FONT_REGULAR = "vsans"
FONT_BOLD = "vsansbd"
_FONT_FACES = {FONT_REGULAR: "notos", FONT_BOLD: "notosbo"}
_FONTS: Dict[str, fitz.Font] = {}
BLACK = (0, 0, 0)
GREY = (0.6, 0.6, 0.6)


@dataclass(frozen=True)
class PlannedPage:
    index: int
    first_row: int
    row_count: int
    has_header: bool
    grading_y: Optional[float] = None  # top of the grading block when it sits on this page


@dataclass(frozen=True)
class LayoutPlan:
    row_count: int
    max_rows_per_page: int
    pages: Tuple[PlannedPage, ...]

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def row_page_count(self) -> int:
        return sum(1 for p in self.pages if p.row_count > 0)

    @property
    def header_count(self) -> int:
        return sum(1 for p in self.pages if p.has_header)

    @property
    def grading_on_own_page(self) -> bool:
        return self.pages[-1].row_count == 0


@dataclass(frozen=True)
class RenderedDocument:
    data: bytes
    plan: LayoutPlan
    scale: GradingScale

    @property
    def page_count(self) -> int:
        return self.plan.page_count


def max_rows_per_page(geometry: PageGeometry = A4_GEOMETRY) -> int:
    usable = geometry.height - geometry.content_start_y - geometry.bottom_margin
    rows = math.floor(usable / geometry.row_height)
    if rows < 1:
        raise ValueError("page geometry leaves no room for a single row")
    return rows


def plan_layout(row_count: int, geometry: PageGeometry = A4_GEOMETRY) -> LayoutPlan:
    """Decide which rows land on which page and where the grading block goes.

    A new page (with header) starts at row i exactly when i > 0 and
    i % max_rows == 0. The grading block follows the last row; if it would
    cross the bottom margin it moves to a page of its own without header.
    """
    if row_count <= 0:
        raise ValidationError("Keine Vokabeln für den Test vorhanden.")
    per_page = max_rows_per_page(geometry)
    pages: List[PlannedPage] = []
    for first in range(0, row_count, per_page):
        pages.append(
            PlannedPage(
                index=len(pages),
                first_row=first,
                row_count=min(per_page, row_count - first),
                has_header=True,
            )
        )

    last = pages[-1]
    grading_y = geometry.content_start_y + last.row_count * geometry.row_height + geometry.grading_spacing
    if grading_y + geometry.grading_block_height > geometry.bottom_limit:
        pages.append(
            PlannedPage(index=len(pages), first_row=row_count, row_count=0, has_header=False, grading_y=geometry.margin_top)
        )
    else:
        pages[-1] = PlannedPage(
            index=last.index,
            first_row=last.first_row,
            row_count=last.row_count,
            has_header=True,
            grading_y=grading_y,
        )
    return LayoutPlan(row_count=row_count, max_rows_per_page=per_page, pages=tuple(pages))


def _font(fontname: str) -> fitz.Font:
    font = _FONTS.get(fontname)
    if font is None:
        font = _FONTS[fontname] = fitz.Font(_FONT_FACES[fontname])
    return font


def _text_length(text: str, *, fontname: str, fontsize: float) -> float:
    return _font(fontname).text_length(text, fontsize=fontsize)


def _fit_text(text: str, max_width: float, *, fontname: str, fontsize: float) -> str:
    if _text_length(text, fontname=fontname, fontsize=fontsize) <= max_width:
        return text
    while text and _text_length(text + "...", fontname=fontname, fontsize=fontsize) > max_width:
        text = text[:-1]
    return text + "..."


def _pdf_date(on_date: date) -> str:
    return on_date.strftime("D:%Y%m%d000000")


class _SheetRenderer:
    """Draws one planned document. Coordinates are top-left based (PyMuPDF)."""

    def __init__(
        self,
        doc: fitz.Document,
        *,
        name: str,
        date_text: str,
        geometry: PageGeometry,
        labels: DocumentLabels,
    ) -> None:
        self.doc = doc
        self.name = name
        self.date_text = date_text
        self.g = geometry
        self.labels = labels

    def new_page(self) -> fitz.Page:
        page = self.doc.new_page(width=self.g.width, height=self.g.height)
        for fontname in (FONT_REGULAR, FONT_BOLD):
            page.insert_font(fontname=fontname, fontbuffer=_font(fontname).buffer)
        return page

    def header(self, page: fitz.Page) -> None:
        g, lb = self.g, self.labels
        right = g.width - g.margin_right
        page.insert_text((g.margin_left, g.margin_top + 18), lb.title, fontname=FONT_BOLD, fontsize=20, color=BLACK)
        list_line = _fit_text(
            f"{lb.list_prefix}: {self.name}",
            g.content_width * 0.65,
            fontname=FONT_REGULAR,
            fontsize=12,
        )
        page.insert_text((g.margin_left, g.margin_top + 46), list_line, fontname=FONT_REGULAR, fontsize=12)
        date_line = f"{lb.date_prefix}: {self.date_text}"
        width = _text_length(date_line, fontname=FONT_REGULAR, fontsize=11)
        page.insert_text((right - width, g.margin_top + 46), date_line, fontname=FONT_REGULAR, fontsize=11)

        caption_y = g.content_start_y - 22
        page.insert_text((g.margin_left + 4, caption_y), lb.source_caption, fontname=FONT_BOLD, fontsize=11)
        page.insert_text((g.column_split_x + 10, caption_y), lb.target_caption, fontname=FONT_BOLD, fontsize=11)
        rule_y = g.content_start_y - 10
        page.draw_line((g.margin_left, rule_y), (right, rule_y), color=BLACK, width=1)

    def row(self, page: fitz.Page, slot: int, number: int, pair: VocabularyPair) -> None:
        g = self.g
        top = g.content_start_y + slot * g.row_height
        bottom = top + g.row_height
        split = g.column_split_x
        text = _fit_text(
            f"{number}. {pair.source}",
            split - g.margin_left - 12,
            fontname=FONT_REGULAR,
            fontsize=11,
        )
        page.insert_text((g.margin_left + 4, bottom - 9), text, fontname=FONT_REGULAR, fontsize=11)
        page.draw_line((split + 10, bottom - 6), (g.width - g.margin_right - 4, bottom - 6), color=GREY, width=0.5)
        page.draw_line((split, top), (split, bottom), color=BLACK, width=0.5)

    def grading_block(self, page: fitz.Page, y0: float, scale: GradingScale) -> None:
        g, lb = self.g, self.labels
        left = g.margin_left
        right = g.width - g.margin_right
        page.insert_text((left, y0 + 16), lb.grading_title, fontname=FONT_BOLD, fontsize=14)
        page.insert_text(
            (left, y0 + 36),
            f"{lb.total_points}: {scale.total_points}",
            fontname=FONT_REGULAR,
            fontsize=11,
        )

        table_top = y0 + 44
        line = 16
        rows = scale.rows()
        table_bottom = table_top + line * (len(rows) + 1) + 6
        page.draw_rect(fitz.Rect(left - 4, table_top, left + 220, table_bottom), color=BLACK, width=0.5)
        page.draw_line((left + 110, table_top), (left + 110, table_bottom), color=BLACK, width=0.5)
        page.insert_text((left + 4, table_top + 14), lb.grade_column, fontname=FONT_BOLD, fontsize=10)
        page.insert_text((left + 118, table_top + 14), lb.points_column, fontname=FONT_BOLD, fontsize=10)
        page.draw_line((left - 4, table_top + 18), (left + 220, table_top + 18), color=BLACK, width=0.5)
        for k, (grade, points) in enumerate(rows, start=1):
            baseline = table_top + 14 + line * k
            page.insert_text((left + 4, baseline), grade, fontname=FONT_REGULAR, fontsize=10)
            page.insert_text((left + 118, baseline), points, fontname=FONT_REGULAR, fontsize=10)

        box_top = table_bottom + 14
        page.draw_rect(fitz.Rect(left - 4, box_top, right, box_top + 60), color=BLACK, width=1)
        field_y = box_top + 36
        page.insert_text((left + 6, field_y), lb.grade_field, fontname=FONT_BOLD, fontsize=11)
        page.draw_line((left + 50, field_y + 2), (g.column_split_x - 20, field_y + 2), color=GREY, width=0.5)
        page.insert_text((g.column_split_x, field_y), lb.errors_field, fontname=FONT_BOLD, fontsize=11)
        page.draw_line((g.column_split_x + 84, field_y + 2), (right - 10, field_y + 2), color=GREY, width=0.5)

        achieved_y = box_top + 86
        page.insert_text((left, achieved_y), lb.achieved_field, fontname=FONT_BOLD, fontsize=11)
        page.draw_line((left + 104, achieved_y + 2), (left + 164, achieved_y + 2), color=GREY, width=0.5)
        page.insert_text((left + 168, achieved_y), f"/ {scale.total_points}", fontname=FONT_REGULAR, fontsize=11)


def render_vocabulary_test(
    name: str,
    pairs: Sequence[VocabularyPair],
    *,
    on_date: date,
    geometry: PageGeometry = A4_GEOMETRY,
    labels: DocumentLabels = DEFAULT_LABELS,
    bands: Sequence[GradeBand] = GRADE_BANDS,
    date_format: str = DATE_FORMAT,
) -> RenderedDocument:
    """Render a vocabulary test sheet to PDF bytes.

    The output depends only on the arguments: metadata dates come from
    `on_date` and no random document id is written.
    """
    plan = plan_layout(len(pairs), geometry)
    scale = calculate_grading_scale(len(pairs), bands)
    date_text = on_date.strftime(date_format)

    doc = fitz.open()
    try:
        renderer = _SheetRenderer(doc, name=name, date_text=date_text, geometry=geometry, labels=labels)
        for planned in plan.pages:
            page = renderer.new_page()
            if planned.has_header:
                renderer.header(page)
            for slot in range(planned.row_count):
                i = planned.first_row + slot
                renderer.row(page, slot, i + 1, pairs[i])
            if planned.grading_y is not None:
                renderer.grading_block(page, planned.grading_y, scale)
        stamp = _pdf_date(on_date)
        doc.set_metadata(
            {
                "title": f"{labels.title} - {name}",
                "author": "",
                "subject": "",
                "keywords": "",
                "creator": "vocab-automation",
                "producer": "vocab-automation",
                "creationDate": stamp,
                "modDate": stamp,
            }
        )
        data = doc.tobytes(garbage=3, deflate=True, no_new_id=True)
    except Exception as exc:
        LOG.error(f"PDF generation failed for '{name}': {exc}")
        raise DocumentGenerationError(f"PDF-Erstellung fehlgeschlagen: {exc}") from exc
    finally:
        doc.close()

    LOG.info(
        "Rendered test sheet '%s': %d row(s), %d page(s), %d row(s)/page",
        name,
        plan.row_count,
        plan.page_count,
        plan.max_rows_per_page,
    )
    return RenderedDocument(data=data, plan=plan, scale=scale)
