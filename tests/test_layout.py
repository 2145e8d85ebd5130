from __future__ import annotations

import math
from datetime import date

import fitz
import pytest

from vocab_automation.errors import ValidationError
from vocab_automation.orchestrator.library.constants import A4_GEOMETRY, GradeBand
from vocab_automation.orchestrator.library.layout import (
    max_rows_per_page,
    plan_layout,
    render_vocabulary_test,
)
from vocab_automation.orchestrator.library.models import VocabularyPair


def _pairs(count: int):
    return [VocabularyPair(f"Wort{i}", f"word{i}") for i in range(1, count + 1)]


def _page_texts(data: bytes):
    with fitz.open(stream=data, filetype="pdf") as doc:
        return [page.get_text() for page in doc]


def test_a4_fits_21_rows() -> None:
    assert max_rows_per_page(A4_GEOMETRY) == 21


@pytest.mark.parametrize("rows", [1, 11, 12, 21, 22, 42, 43, 60])
def test_plan_row_pages_and_headers(rows: int) -> None:
    plan = plan_layout(rows)
    per_page = plan.max_rows_per_page
    assert plan.row_page_count == math.ceil(rows / per_page)
    assert plan.header_count == plan.row_page_count
    assert sum(p.row_count for p in plan.pages) == rows
    for page in plan.pages:
        if page.row_count:
            assert page.first_row % per_page == 0
    assert sum(1 for p in plan.pages if p.grading_y is not None) == 1
    assert plan.pages[-1].grading_y is not None


def test_grading_shares_last_page_when_it_fits() -> None:
    plan = plan_layout(11)
    assert plan.page_count == 1
    assert not plan.grading_on_own_page


def test_grading_moves_to_extra_page_without_header() -> None:
    plan = plan_layout(12)
    assert plan.page_count == 2
    assert plan.grading_on_own_page
    extra = plan.pages[-1]
    assert extra.row_count == 0
    assert extra.has_header is False
    assert extra.grading_y == A4_GEOMETRY.margin_top


def test_plan_rejects_empty_lists() -> None:
    with pytest.raises(ValidationError):
        plan_layout(0)
    with pytest.raises(ValidationError):
        render_vocabulary_test("Leer", [], on_date=date(2024, 9, 2))


def test_two_pairs_render_one_page_with_everything() -> None:
    rendered = render_vocabulary_test(
        "Unit 1",
        [VocabularyPair("Haus", "house"), VocabularyPair("Baum", "tree")],
        on_date=date(2024, 9, 2),
    )
    assert rendered.page_count == 1
    assert rendered.scale.total_points == 2

    (text,) = _page_texts(rendered.data)
    assert "Vokabeltest" in text
    assert "Liste: Unit 1" in text
    assert "Datum: 02.09.2024" in text
    assert "1. Haus" in text
    assert "2. Baum" in text
    assert "Notenspiegel" in text
    assert "Gesamtpunktzahl: 2" in text
    # target words are left blank for the student
    assert "house" not in text and "tree" not in text


def test_long_list_repeats_header_on_every_row_page() -> None:
    rendered = render_vocabulary_test("Unit 7", _pairs(45), on_date=date(2024, 9, 2))
    texts = _page_texts(rendered.data)
    assert len(texts) == rendered.page_count == rendered.plan.page_count

    row_pages = rendered.plan.row_page_count
    assert row_pages == 3
    for text in texts[:row_pages]:
        assert "Vokabeltest" in text
    assert "22. Wort22" in texts[1]
    assert "Notenspiegel" in texts[-1]
    assert sum(t.count("Notenspiegel") for t in texts) == 1


def test_output_is_deterministic() -> None:
    pairs = _pairs(30)
    first = render_vocabulary_test("Unit 3", pairs, on_date=date(2024, 9, 2))
    second = render_vocabulary_test("Unit 3", pairs, on_date=date(2024, 9, 2))
    assert first.data == second.data
    assert first.data.startswith(b"%PDF")


def test_typographic_characters_survive_rendering() -> None:
    words = ["don’t", "„Haus“", "Café – Bar", "€ 5"]
    rendered = render_vocabulary_test(
        "Unit ’7",
        [VocabularyPair(w, "x") for w in words],
        on_date=date(2024, 9, 2),
    )
    (text,) = _page_texts(rendered.data)
    assert "Liste: Unit ’7" in text
    for number, word in enumerate(words, start=1):
        assert f"{number}. {word}" in text


def test_header_once_per_row_page_and_absent_on_grading_page() -> None:
    rendered = render_vocabulary_test("Unit 4", _pairs(12), on_date=date(2024, 9, 2))
    texts = _page_texts(rendered.data)
    assert len(texts) == 2
    assert texts[0].count("Vokabeltest") == 1
    assert texts[0].count("Liste: Unit 4") == 1
    assert texts[1].count("Vokabeltest") == 0
    assert "Liste:" not in texts[1]
    assert "Notenspiegel" in texts[1]


def test_custom_bands_and_date_format_reach_the_sheet() -> None:
    bands = (GradeBand("A", "pass", 50, 100), GradeBand("F", "fail", 0, 49))
    rendered = render_vocabulary_test(
        "Unit 5",
        _pairs(10),
        on_date=date(2024, 9, 2),
        bands=bands,
        date_format="%Y-%m-%d",
    )
    (text,) = _page_texts(rendered.data)
    assert "Datum: 2024-09-02" in text
    assert [r.grade for r in rendered.scale.ranges] == ["A", "F"]
