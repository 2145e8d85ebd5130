from __future__ import annotations

import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from ...errors import EntityNotFoundError, PersistenceError, ValidationError
from ...logging import get_logger
from ...paths import find_project_root, var_dir
from .models import Association, Book, Page, VocabularyPair


LOG = get_logger("library-db")


DEFAULT_DB_FOLDER = "library"
DEFAULT_DB_FILENAME = "vocabulary.sqlite3"


SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

-- 1) Saved extraction results ("pages")
CREATE TABLE IF NOT EXISTS pages (
  page_id        TEXT PRIMARY KEY,
  name           TEXT NOT NULL CHECK(length(trim(name)) > 0),
  raw_text       TEXT NOT NULL DEFAULT '',
  preview_image  TEXT,                    -- data URL
  created_at     TEXT NOT NULL            -- ISO-8601 UTC, millisecond precision
);

CREATE TABLE IF NOT EXISTS page_pairs (
  page_id   TEXT NOT NULL REFERENCES pages(page_id) ON DELETE CASCADE,
  position  INTEGER NOT NULL CHECK(position >= 0),
  source    TEXT NOT NULL CHECK(length(source) > 0),
  target    TEXT NOT NULL CHECK(length(target) > 0),
  PRIMARY KEY (page_id, position)
);

-- 2) Books
CREATE TABLE IF NOT EXISTS books (
  book_id      TEXT PRIMARY KEY,
  name         TEXT NOT NULL CHECK(length(trim(name)) > 0),
  cover_image  TEXT,                      -- data URL
  created_at   TEXT NOT NULL
);

-- 3) Page -> book membership; a page belongs to at most one book
CREATE TABLE IF NOT EXISTS book_pages (
  assoc_id  INTEGER PRIMARY KEY,
  book_id   TEXT NOT NULL REFERENCES books(book_id) ON DELETE CASCADE,
  page_id   TEXT NOT NULL REFERENCES pages(page_id) ON DELETE CASCADE
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_book_pages_page ON book_pages(page_id);
CREATE INDEX IF NOT EXISTS idx_book_pages_book        ON book_pages(book_id, assoc_id);

-- 4) Settings (extraction API key)
CREATE TABLE IF NOT EXISTS api_settings (
  key         TEXT PRIMARY KEY,
  value       TEXT NOT NULL,
  updated_at  TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_pages_created ON pages(created_at);
"""


PairLike = Union[VocabularyPair, Dict[str, Any]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LibraryDatabase:
    """SQLite-backed store for pages, books and their associations.

    - Places DB under `<repo-root>/var/library/vocabulary.sqlite3` unless an
      explicit `db_path` is given.
    - Ensures schema on first use.
    - Every write runs in one transaction; sqlite errors roll back and surface
      as PersistenceError.
    """

    def __init__(
        self,
        root_dir: Optional[str] = None,
        *,
        db_path: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if db_path:
            self.db_path = os.path.abspath(db_path)
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        else:
            db_folder = os.path.join(var_dir(find_project_root(root_dir)), DEFAULT_DB_FOLDER)
            os.makedirs(db_folder, exist_ok=True)
            self.db_path = os.path.join(db_folder, DEFAULT_DB_FILENAME)
        self._clock = clock or _utc_now
        LOG.info(f"Library DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open library database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON;")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _write(self, action: str) -> Iterator[sqlite3.Cursor]:
        """Run one logical write; commit on success, roll back on any error."""
        with self.connect() as conn:
            try:
                yield conn.cursor()
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                LOG.error("%s failed and was rolled back: %s", action, exc)
                raise PersistenceError(f"{action} failed: {exc}") from exc
            except Exception:
                conn.rollback()
                raise

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Cursor]:
        with self.connect() as conn:
            try:
                yield conn.cursor()
            except sqlite3.Error as exc:
                LOG.error("Library query failed: %s", exc)
                raise PersistenceError(f"query failed: {exc}") from exc

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.Error:
                # Non-fatal; continue with schema creation
                pass
            LOG.debug("Ensuring library DB schema is present")
            try:
                cur.executescript(SCHEMA_SQL)
                conn.commit()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot create library schema: {exc}") from exc

    def _now(self) -> str:
        return self._clock().astimezone(timezone.utc).isoformat(timespec="milliseconds")

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    # --------------- Validation helpers ---------------
    @staticmethod
    def _clean_name(name: Optional[str], message: str) -> str:
        cleaned = name.strip() if isinstance(name, str) else ""
        if not cleaned:
            raise ValidationError(message)
        return cleaned

    @staticmethod
    def _coerce_pairs(pairs: Iterable[PairLike]) -> List[VocabularyPair]:
        result: List[VocabularyPair] = []
        for idx, pair in enumerate(pairs or []):
            if isinstance(pair, dict):
                try:
                    pair = VocabularyPair.from_dict(pair)
                except KeyError as exc:
                    raise ValidationError(f"pairs[{idx}] is missing {exc}") from exc
            if not isinstance(pair, VocabularyPair):
                raise ValidationError(f"pairs[{idx}] must be a vocabulary pair")
            if not pair.source.strip() or not pair.target.strip():
                raise ValidationError(f"pairs[{idx}] has an empty word")
            result.append(pair)
        return result

    @staticmethod
    def _require(cur: sqlite3.Cursor, table: str, column: str, value: str, kind: str) -> None:
        cur.execute(f"SELECT 1 FROM {table} WHERE {column} = ?;", (value,))
        if cur.fetchone() is None:
            raise EntityNotFoundError(kind, value)

    # --------------- Pages ---------------
    def create_page(
        self,
        name: str,
        pairs: Sequence[PairLike],
        raw_text: str,
        preview_image: Optional[str] = None,
    ) -> Page:
        clean_name = self._clean_name(name, "Bitte geben Sie einen Namen für die Vokabelliste ein.")
        clean_pairs = self._coerce_pairs(pairs)
        if not clean_pairs:
            raise ValidationError("Keine gültigen Vokabelpaare gefunden.")
        page = Page(
            page_id=self._new_id(),
            name=clean_name,
            pairs=tuple(clean_pairs),
            raw_text=raw_text or "",
            created_at=self._now(),
            preview_image=preview_image or None,
        )
        with self._write("create page") as cur:
            cur.execute(
                """
                INSERT INTO pages (page_id, name, raw_text, preview_image, created_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                (page.page_id, page.name, page.raw_text, page.preview_image, page.created_at),
            )
            cur.executemany(
                "INSERT INTO page_pairs (page_id, position, source, target) VALUES (?, ?, ?, ?);",
                [(page.page_id, pos, p.source, p.target) for pos, p in enumerate(page.pairs)],
            )
        LOG.info("Saved page %s '%s' with %d pair(s)", page.page_id, page.name, len(page.pairs))
        return page

    def _pages_from_rows(self, cur: sqlite3.Cursor, rows: Sequence[sqlite3.Row]) -> List[Page]:
        if not rows:
            return []
        ids = [row["page_id"] for row in rows]
        placeholders = ", ".join("?" for _ in ids)
        cur.execute(
            f"""
            SELECT page_id, source, target
            FROM page_pairs
            WHERE page_id IN ({placeholders})
            ORDER BY page_id, position;
            """,
            ids,
        )
        pairs_by_page: Dict[str, List[VocabularyPair]] = {}
        for pair_row in cur.fetchall():
            pairs_by_page.setdefault(pair_row["page_id"], []).append(
                VocabularyPair(source=pair_row["source"], target=pair_row["target"])
            )
        return [
            Page(
                page_id=row["page_id"],
                name=row["name"],
                pairs=tuple(pairs_by_page.get(row["page_id"], ())),
                raw_text=row["raw_text"],
                created_at=row["created_at"],
                preview_image=row["preview_image"],
            )
            for row in rows
        ]

    def get_page(self, page_id: str) -> Page:
        with self._read() as cur:
            cur.execute("SELECT * FROM pages WHERE page_id = ?;", (page_id,))
            row = cur.fetchone()
            if row is None:
                raise EntityNotFoundError("Page", page_id)
            return self._pages_from_rows(cur, [row])[0]

    def list_pages(self) -> List[Page]:
        """All pages, newest first; equal timestamps keep insertion order."""
        with self._read() as cur:
            cur.execute("SELECT * FROM pages ORDER BY created_at DESC, rowid ASC;")
            return self._pages_from_rows(cur, cur.fetchall())

    def list_unassigned_pages(self) -> List[Page]:
        with self._read() as cur:
            cur.execute(
                """
                SELECT p.*
                FROM pages p
                WHERE NOT EXISTS (SELECT 1 FROM book_pages bp WHERE bp.page_id = p.page_id)
                ORDER BY p.created_at DESC, p.rowid ASC;
                """
            )
            return self._pages_from_rows(cur, cur.fetchall())

    def delete_page(self, page_id: str) -> bool:
        """Delete a page, its pairs and its book membership. False if unknown."""
        with self._write("delete page") as cur:
            cur.execute("DELETE FROM book_pages WHERE page_id = ?;", (page_id,))
            cur.execute("DELETE FROM page_pairs WHERE page_id = ?;", (page_id,))
            cur.execute("DELETE FROM pages WHERE page_id = ?;", (page_id,))
            deleted = cur.rowcount > 0
        if deleted:
            LOG.info("Deleted page %s", page_id)
        return deleted

    # --------------- Books ---------------
    def create_book(self, name: str, cover_image: Optional[str] = None) -> Book:
        clean_name = self._clean_name(name, "Bitte geben Sie einen Buchnamen ein.")
        book = Book(
            book_id=self._new_id(),
            name=clean_name,
            created_at=self._now(),
            cover_image=cover_image or None,
        )
        with self._write("create book") as cur:
            cur.execute(
                "INSERT INTO books (book_id, name, cover_image, created_at) VALUES (?, ?, ?, ?);",
                (book.book_id, book.name, book.cover_image, book.created_at),
            )
        LOG.info("Created book %s '%s'", book.book_id, book.name)
        return book

    @staticmethod
    def _book_from_row(row: sqlite3.Row) -> Book:
        return Book(
            book_id=row["book_id"],
            name=row["name"],
            created_at=row["created_at"],
            cover_image=row["cover_image"],
            page_count=int(row["page_count"] or 0),
        )

    _BOOK_SELECT = """
        SELECT b.book_id, b.name, b.cover_image, b.created_at, COUNT(bp.page_id) AS page_count
        FROM books b
        LEFT JOIN book_pages bp ON bp.book_id = b.book_id
    """

    def get_book(self, book_id: str) -> Book:
        with self._read() as cur:
            cur.execute(self._BOOK_SELECT + " WHERE b.book_id = ? GROUP BY b.book_id;", (book_id,))
            row = cur.fetchone()
            if row is None:
                raise EntityNotFoundError("Book", book_id)
            return self._book_from_row(row)

    def list_books(self) -> List[Book]:
        with self._read() as cur:
            cur.execute(self._BOOK_SELECT + " GROUP BY b.book_id ORDER BY b.created_at ASC, b.rowid ASC;")
            return [self._book_from_row(row) for row in cur.fetchall()]

    def delete_book(self, book_id: str) -> bool:
        """Delete a book and its memberships; the pages themselves stay."""
        with self._write("delete book") as cur:
            cur.execute("DELETE FROM book_pages WHERE book_id = ?;", (book_id,))
            released = cur.rowcount
            cur.execute("DELETE FROM books WHERE book_id = ?;", (book_id,))
            deleted = cur.rowcount > 0
        if deleted:
            LOG.info("Deleted book %s; %d page(s) are unassigned again", book_id, released)
        return deleted

    def pages_for_book(self, book_id: str) -> List[Page]:
        """Pages of a book in the order they were assigned."""
        with self._read() as cur:
            self._require(cur, "books", "book_id", book_id, "Book")
            cur.execute(
                """
                SELECT p.*
                FROM book_pages bp
                JOIN pages p ON p.page_id = bp.page_id
                WHERE bp.book_id = ?
                ORDER BY bp.assoc_id;
                """,
                (book_id,),
            )
            return self._pages_from_rows(cur, cur.fetchall())

    # --------------- Associations ---------------
    def assign(self, page_id: str, book_id: str) -> bool:
        """Move a page into a book. Returns False when it was already there.

        The old membership is removed and the new one inserted in the same
        transaction, so a failure leaves the page in its previous book.
        """
        with self._write("assign page") as cur:
            self._require(cur, "pages", "page_id", page_id, "Page")
            self._require(cur, "books", "book_id", book_id, "Book")
            cur.execute("SELECT book_id FROM book_pages WHERE page_id = ?;", (page_id,))
            current = cur.fetchone()
            if current is not None and current["book_id"] == book_id:
                LOG.debug("Page %s already in book %s", page_id, book_id)
                return False
            cur.execute("DELETE FROM book_pages WHERE page_id = ?;", (page_id,))
            cur.execute("INSERT INTO book_pages (book_id, page_id) VALUES (?, ?);", (book_id, page_id))
        LOG.info(
            "Assigned page %s to book %s%s",
            page_id,
            book_id,
            f" (moved from {current['book_id']})" if current is not None else "",
        )
        return True

    def unassign(self, page_id: str, book_id: str) -> bool:
        with self._write("unassign page") as cur:
            cur.execute("DELETE FROM book_pages WHERE page_id = ? AND book_id = ?;", (page_id, book_id))
            removed = cur.rowcount > 0
        if removed:
            LOG.info("Removed page %s from book %s", page_id, book_id)
        return removed

    def book_for_page(self, page_id: str) -> Optional[str]:
        with self._read() as cur:
            cur.execute("SELECT book_id FROM book_pages WHERE page_id = ?;", (page_id,))
            row = cur.fetchone()
            return row["book_id"] if row is not None else None

    def list_associations(self) -> List[Association]:
        with self._read() as cur:
            cur.execute("SELECT book_id, page_id FROM book_pages ORDER BY assoc_id;")
            return [Association(book_id=row["book_id"], page_id=row["page_id"]) for row in cur.fetchall()]

    # --------------- Settings ---------------
    def get_setting(self, key: str) -> Optional[str]:
        with self._read() as cur:
            cur.execute("SELECT value FROM api_settings WHERE key = ?;", (key,))
            row = cur.fetchone()
            return row["value"] if row is not None else None

    def set_setting(self, key: str, value: str) -> None:
        with self._write("save setting") as cur:
            cur.execute(
                """
                INSERT INTO api_settings (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at;
                """,
                (key, value),
            )

    def delete_setting(self, key: str) -> None:
        with self._write("delete setting") as cur:
            cur.execute("DELETE FROM api_settings WHERE key = ?;", (key,))

    # --------------- Query helpers ---------------
    def fetch_summary(self) -> Dict[str, Any]:
        """Return table counts for the library overview and health checks."""
        with self._read() as cur:
            counts: Dict[str, int] = {}
            for table in ("pages", "page_pairs", "books", "book_pages"):
                cur.execute(f"SELECT COUNT(*) AS count FROM {table};")
                counts[table] = int(cur.fetchone()["count"])
            cur.execute(
                "SELECT COUNT(*) AS count FROM pages p "
                "WHERE NOT EXISTS (SELECT 1 FROM book_pages bp WHERE bp.page_id = p.page_id);"
            )
            counts["unassigned_pages"] = int(cur.fetchone()["count"])
            return {"db_path": self.db_path, "counts": counts}
