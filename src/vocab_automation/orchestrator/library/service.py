from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

from ...errors import (
    DocumentGenerationError,
    EntityNotFoundError,
    StaleResultError,
    ValidationError,
)
from ...logging import get_logger
from ..export import document_filename
from .constants import (
    A4_GEOMETRY,
    DATE_FORMAT,
    DEFAULT_LABELS,
    GRADE_BANDS,
    DocumentLabels,
    GradeBand,
    PageGeometry,
)
from .db import LibraryDatabase
from .layout import render_vocabulary_test
from .models import Book, Page, VocabularyPair
from .parser import parse_vocabulary_csv

if TYPE_CHECKING:
    from ..extraction import ExtractionOrchestrator


LOG = get_logger("library-service")


class LatestRequestGuard:
    """Hands out increasing tickets; only the newest ticket may deliver a result."""

    def __init__(self) -> None:
        self._latest = 0
        self._lock = threading.Lock()

    def begin(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def is_current(self, ticket: int) -> bool:
        with self._lock:
            return ticket == self._latest

    @property
    def latest(self) -> int:
        return self._latest


@dataclass(frozen=True)
class ExtractionResult:
    request_id: int
    raw_text: str
    pairs: Tuple[VocabularyPair, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "rawText": self.raw_text,
            "pairs": [p.to_dict() for p in self.pairs],
        }


@dataclass(frozen=True)
class DocumentHandle:
    handle_id: str
    page_id: str
    filename: str
    data: bytes
    page_count: int
    context: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handleId": self.handle_id,
            "pageId": self.page_id,
            "filename": self.filename,
            "pageCount": self.page_count,
            "byteSize": len(self.data),
        }


class DocumentRegistry:
    """Keeps generated PDFs alive while they are being viewed.

    One live document per viewing context: registering a new one for the same
    context releases the previous handle.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, DocumentHandle] = {}
        self._by_context: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, *, context: str, page_id: str, filename: str, data: bytes, page_count: int) -> DocumentHandle:
        handle = DocumentHandle(
            handle_id=uuid.uuid4().hex,
            page_id=page_id,
            filename=filename,
            data=data,
            page_count=page_count,
            context=context,
        )
        with self._lock:
            previous = self._by_context.get(context)
            if previous is not None:
                self._handles.pop(previous, None)
                LOG.debug("Released superseded document %s (context=%s)", previous, context)
            self._handles[handle.handle_id] = handle
            self._by_context[context] = handle.handle_id
        return handle

    def get(self, handle_id: str) -> DocumentHandle:
        with self._lock:
            handle = self._handles.get(handle_id)
        if handle is None:
            raise EntityNotFoundError("Document", handle_id)
        return handle

    def release(self, handle_id: str) -> bool:
        with self._lock:
            handle = self._handles.pop(handle_id, None)
            if handle is None:
                return False
            if self._by_context.get(handle.context) == handle_id:
                del self._by_context[handle.context]
        LOG.debug("Released document %s", handle_id)
        return True

    def release_for_page(self, page_id: str) -> int:
        with self._lock:
            stale = [h.handle_id for h in self._handles.values() if h.page_id == page_id]
        for handle_id in stale:
            self.release(handle_id)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            count = len(self._handles)
            self._handles.clear()
            self._by_context.clear()
        if count:
            LOG.info("Released %d open document(s)", count)

    def __len__(self) -> int:
        return len(self._handles)


class LibraryService:
    """High-level service coordinating extraction, parsing, storage and printing."""

    def __init__(
        self,
        db: Optional[LibraryDatabase] = None,
        extractor: Optional["ExtractionOrchestrator"] = None,
        *,
        today: Callable[[], date] = date.today,
        geometry: PageGeometry = A4_GEOMETRY,
        labels: DocumentLabels = DEFAULT_LABELS,
        bands: Sequence[GradeBand] = GRADE_BANDS,
        date_format: str = DATE_FORMAT,
    ) -> None:
        self.db = db or LibraryDatabase()
        self.extractor = extractor
        self.guard = LatestRequestGuard()
        self.documents = DocumentRegistry()
        self._today = today
        self._geometry = geometry
        self._labels = labels
        self._bands = tuple(bands)
        self._date_format = date_format

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    def extract(self, image: bytes, mime_type: str) -> ExtractionResult:
        """Run the vision model and parse its answer (nothing is saved).

        Raises StaleResultError when another extraction started while this one
        was waiting on the model; the older answer is dropped.
        """
        if self.extractor is None:
            raise RuntimeError("LibraryService was created without an extractor")
        ticket = self.guard.begin()
        raw_text = self.extractor.extract(image, mime_type)
        if not self.guard.is_current(ticket):
            LOG.info("Discarding stale extraction result %d (latest is %d)", ticket, self.guard.latest)
            raise StaleResultError(ticket, self.guard.latest)
        pairs = parse_vocabulary_csv(raw_text)
        LOG.info("Extraction %d produced %d vocabulary pair(s)", ticket, len(pairs))
        return ExtractionResult(request_id=ticket, raw_text=raw_text, pairs=tuple(pairs))

    def save_page(self, name: str, raw_text: str, preview_image: Optional[str] = None) -> Page:
        """Parse the (possibly user-edited) raw text and store it as a page."""
        if not raw_text or not raw_text.strip():
            raise ValidationError("Keine Vokabeln zum Speichern vorhanden.")
        if not name or not name.strip():
            raise ValidationError("Bitte geben Sie einen Namen für die Vokabelliste ein.")
        pairs = parse_vocabulary_csv(raw_text)
        if not pairs:
            raise ValidationError("Keine gültigen Vokabelpaare gefunden.")
        return self.db.create_page(name, pairs, raw_text, preview_image)

    # ------------------------------------------------------------------
    # Library
    # ------------------------------------------------------------------
    def create_book(self, name: str, cover_image: Optional[str] = None) -> Book:
        return self.db.create_book(name, cover_image)

    def delete_book(self, book_id: str) -> bool:
        return self.db.delete_book(book_id)

    def delete_page(self, page_id: str) -> bool:
        deleted = self.db.delete_page(page_id)
        if deleted:
            self.documents.release_for_page(page_id)
        return deleted

    def assign(self, page_id: str, book_id: str) -> bool:
        return self.db.assign(page_id, book_id)

    def unassign(self, page_id: str, book_id: str) -> bool:
        return self.db.unassign(page_id, book_id)

    def list_unassigned_pages(self) -> List[Page]:
        return self.db.list_unassigned_pages()

    def pages_for_book(self, book_id: str) -> List[Page]:
        return self.db.pages_for_book(book_id)

    def library_overview(self) -> Dict[str, Any]:
        """Books with page counts plus the pages that still need a book."""
        return {
            "books": [b.to_dict() for b in self.db.list_books()],
            "unassignedPages": [p.to_dict() for p in self.db.list_unassigned_pages()],
        }

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def generate_document(self, page_id: str, *, context: str = "default") -> DocumentHandle:
        """Render the test sheet for a page and keep it under a transient handle."""
        page = self.db.get_page(page_id)
        try:
            rendered = render_vocabulary_test(
                page.name,
                page.pairs,
                on_date=self._today(),
                geometry=self._geometry,
                labels=self._labels,
                bands=self._bands,
                date_format=self._date_format,
            )
        except (DocumentGenerationError, ValidationError):
            raise
        except Exception as exc:
            LOG.error(f"Document generation failed for page {page_id}: {exc}")
            raise DocumentGenerationError(f"PDF-Erstellung fehlgeschlagen: {exc}") from exc
        handle = self.documents.register(
            context=context,
            page_id=page.page_id,
            filename=document_filename(page.name),
            data=rendered.data,
            page_count=rendered.page_count,
        )
        LOG.info("Document %s ready for page %s (%s)", handle.handle_id, page_id, handle.filename)
        return handle

    def release_document(self, handle_id: str) -> bool:
        return self.documents.release(handle_id)

    def close(self) -> None:
        self.documents.clear()
