from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


# Instruction sent with every uploaded image. The model answers with one
# "german,english" pair per line.
VOCABULARY_PROMPT = (
    "Bei diesem Bild handelt es sich um eine Vokabelliste aus einem englisch Buch. "
    "Gib die Dargestellten Vokabeln in einer CSV-Datei aus. "
    "Stelle die Vokabeln jeweils in Paaren zusammen. "
    "Erst die deutsche Vokabel, dann die englische. "
    "Ignoriere die Beschreibungen und die Lautschrift."
)

MAX_IMAGE_BYTES = 10 * 1024 * 1024

# de-DE short date, e.g. 07.03.2025
DATE_FORMAT = "%d.%m.%Y"

DOCUMENT_FILENAME_SUFFIX = "_Vokabeltest.pdf"


@dataclass(frozen=True)
class GradeBand:
    grade: str
    label: str
    min_percent: int
    max_percent: int


GRADE_BANDS: Tuple[GradeBand, ...] = (
    GradeBand("1", "sehr gut", 87, 100),
    GradeBand("2", "gut", 73, 86),
    GradeBand("3", "befriedigend", 59, 72),
    GradeBand("4", "ausreichend", 45, 58),
    GradeBand("5", "mangelhaft", 18, 44),
    GradeBand("6", "ungenügend", 0, 17),
)


@dataclass(frozen=True)
class DocumentLabels:
    title: str = "Vokabeltest"
    list_prefix: str = "Liste"
    date_prefix: str = "Datum"
    source_caption: str = "Deutsch"
    target_caption: str = "Englisch (ausfüllen)"
    grading_title: str = "Notenspiegel"
    total_points: str = "Gesamtpunktzahl"
    grade_column: str = "Note"
    points_column: str = "Punkte"
    grade_field: str = "Note:"
    errors_field: str = "Fehleranzahl:"
    achieved_field: str = "Erreichte Punkte:"


DEFAULT_LABELS = DocumentLabels()


@dataclass(frozen=True)
class PageGeometry:
    """A4 portrait in PDF points (1/72 inch)."""

    width: float = 595.0
    height: float = 842.0
    margin_left: float = 56.0
    margin_right: float = 56.0
    margin_top: float = 56.0
    bottom_margin: float = 56.0
    content_start_y: float = 176.0
    row_height: float = 28.0
    grading_spacing: float = 24.0
    grading_block_height: float = 270.0

    @property
    def content_width(self) -> float:
        return self.width - self.margin_left - self.margin_right

    @property
    def column_split_x(self) -> float:
        return self.margin_left + self.content_width / 2

    @property
    def bottom_limit(self) -> float:
        return self.height - self.bottom_margin


A4_GEOMETRY = PageGeometry()
