"""Vocabulary library package.

Stores saved extraction results ("pages") and books in SQLite and renders
printable test sheets.

Modules:
- constants: prompt, grading bands, page geometry, captions
- models: dataclasses for pairs, pages, books, associations
- parser: CSV answer -> vocabulary pairs
- db: SQLite store with the one-book-per-page constraint
- grading: percentage bands -> point ranges
- layout: pagination plan + PyMuPDF renderer
- service: orchestrator-facing service layer
- frontend: Starlette API
"""

from .db import LibraryDatabase
from .grading import GradingScale, calculate_grading_scale
from .layout import LayoutPlan, plan_layout, render_vocabulary_test
from .models import Association, Book, Page, VocabularyPair
from .parser import parse_vocabulary_csv
from .service import DocumentHandle, LibraryService, LatestRequestGuard

__all__ = [
    "LibraryDatabase",
    "GradingScale",
    "calculate_grading_scale",
    "LayoutPlan",
    "plan_layout",
    "render_vocabulary_test",
    "Association",
    "Book",
    "Page",
    "VocabularyPair",
    "parse_vocabulary_csv",
    "DocumentHandle",
    "LibraryService",
    "LatestRequestGuard",
]
