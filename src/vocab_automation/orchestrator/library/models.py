from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class VocabularyPair:
    source: str  # German
    target: str  # English

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "target": self.target}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VocabularyPair":
        return cls(source=str(data["source"]).strip(), target=str(data["target"]).strip())


@dataclass(frozen=True)
class Page:
    page_id: str
    name: str
    pairs: Tuple[VocabularyPair, ...]
    raw_text: str
    created_at: str  # ISO-8601 UTC
    preview_image: Optional[str] = None  # data URL

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.page_id,
            "name": self.name,
            "pairs": [p.to_dict() for p in self.pairs],
            "rawText": self.raw_text,
            "createdAt": self.created_at,
        }
        if self.preview_image:
            payload["previewImage"] = self.preview_image
        return payload


@dataclass(frozen=True)
class Book:
    book_id: str
    name: str
    created_at: str
    cover_image: Optional[str] = None
    page_count: int = field(default=0, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.book_id,
            "name": self.name,
            "createdAt": self.created_at,
            "pageCount": self.page_count,
        }
        if self.cover_image:
            payload["coverImage"] = self.cover_image
        return payload


@dataclass(frozen=True)
class Association:
    book_id: str
    page_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"bookId": self.book_id, "pageId": self.page_id}
