from __future__ import annotations

import base64
from datetime import date
from pathlib import Path

from starlette.testclient import TestClient

from vocab_automation.config import CredentialSettings
from vocab_automation.errors import UpstreamCredentialError
from vocab_automation.orchestrator.library import LibraryDatabase, LibraryService
from vocab_automation.orchestrator.library.frontend import create_app

IMAGE = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode("ascii")


class _Extractor:
    def __init__(self, settings: CredentialSettings) -> None:
        self.settings = settings

    def extract(self, image: bytes, mime_type: str) -> str:
        if not self.settings.get():
            raise UpstreamCredentialError("Bitte konfigurieren Sie zuerst Ihren API-Schlüssel in den Einstellungen.")
        return "Haus,house\nBaum,tree"


def _client(tmp_path: Path, api_key: str = "sk-test-abcdef") -> TestClient:
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    db = LibraryDatabase(root_dir=str(tmp_path))
    settings = CredentialSettings(db, fallback=api_key)
    service = LibraryService(db, _Extractor(settings), today=lambda: date(2024, 9, 2))
    app = create_app(root_dir=str(tmp_path), service=service, serve_static=False, allow_origins=["*"])
    return TestClient(app)


def test_extract_save_and_print(tmp_path: Path) -> None:
    client = _client(tmp_path)

    extracted = client.post("/api/extract", json={"image": IMAGE})
    assert extracted.status_code == 200
    body = extracted.json()
    assert body["pairs"] == [{"source": "Haus", "target": "house"}, {"source": "Baum", "target": "tree"}]

    saved = client.post("/api/pages", json={"name": "Unit 1", "rawText": body["rawText"], "previewImage": IMAGE})
    assert saved.status_code == 201
    page_id = saved.json()["id"]

    listing = client.get("/api/pages", params={"unassigned": "1"})
    assert listing.json()["total"] == 1

    document = client.post(f"/api/pages/{page_id}/document")
    assert document.status_code == 201
    meta = document.json()
    assert meta["pageCount"] == 1
    assert meta["filename"] == "Unit-1_Vokabeltest.pdf"

    pdf = client.get(meta["url"], params={"download": "1"})
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.headers["content-disposition"].startswith("attachment;")
    assert pdf.content.startswith(b"%PDF")

    assert client.delete(meta["url"]).status_code == 204
    assert client.get(meta["url"]).status_code == 404


def test_books_and_assignment(tmp_path: Path) -> None:
    client = _client(tmp_path)
    page_id = client.post("/api/pages", json={"name": "Unit 1", "rawText": "Haus,house"}).json()["id"]
    book_a = client.post("/api/books", json={"name": "Englisch 5"}).json()["id"]
    book_b = client.post("/api/books", json={"name": "Englisch 6"}).json()["id"]

    assigned = client.put(f"/api/books/{book_a}/pages/{page_id}")
    assert assigned.json()["changed"] is True
    moved = client.put(f"/api/books/{book_b}/pages/{page_id}")
    assert moved.json()["changed"] is True

    assert client.get(f"/api/pages/{page_id}").json()["bookId"] == book_b
    assert client.get(f"/api/books/{book_a}").json()["pages"] == []
    assert [p["id"] for p in client.get(f"/api/books/{book_b}").json()["pages"]] == [page_id]

    library = client.get("/api/library").json()
    assert [b["pageCount"] for b in library["books"]] == [0, 1]
    assert library["unassignedPages"] == []

    removed = client.delete(f"/api/books/{book_b}/pages/{page_id}")
    assert removed.json()["removed"] is True
    assert client.delete(f"/api/books/{book_b}").status_code == 204
    assert client.delete(f"/api/books/{book_b}").status_code == 404

    summary = client.get("/api/summary").json()
    assert summary["counts"]["books"] == 1
    assert summary["counts"]["unassigned_pages"] == 1


def test_error_mapping(tmp_path: Path) -> None:
    client = _client(tmp_path)

    assert client.post("/api/pages", json={"name": "", "rawText": "Haus,house"}).status_code == 400
    assert client.post("/api/extract", json={"image": "kein bild"}).status_code == 400
    assert client.post("/api/books", content=b"not json").status_code == 400
    assert client.get("/api/pages/unknown").status_code == 404
    assert client.put("/api/books/unknown/pages/unknown").status_code == 404
    assert client.post("/api/pages/unknown/document").status_code == 404


def test_api_key_lifecycle(tmp_path: Path) -> None:
    client = _client(tmp_path, api_key="")

    status = client.get("/api/settings/api-key").json()
    assert status == {"configured": False, "masked": None}

    missing = client.post("/api/extract", json={"image": IMAGE})
    assert missing.status_code == 401
    assert missing.json()["redirect"] == "/settings"

    assert client.put("/api/settings/api-key", json={"apiKey": "   "}).status_code == 400
    saved = client.put("/api/settings/api-key", json={"apiKey": "sk-live-987654321"}).json()
    assert saved["configured"] is True
    assert "987654321" not in saved["masked"]
    assert client.post("/api/extract", json={"image": IMAGE}).status_code == 200

    cleared = client.delete("/api/settings/api-key").json()
    assert cleared["configured"] is False
    assert client.get("/api/health").json()["apiKeyConfigured"] is False


def test_api_only_root(tmp_path: Path) -> None:
    client = _client(tmp_path)
    response = client.get("/")
    assert response.status_code == 200
    assert "Static frontend disabled" in response.json()["detail"]
