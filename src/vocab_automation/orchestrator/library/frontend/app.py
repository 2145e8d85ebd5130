from __future__ import annotations

import contextlib
import os
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.staticfiles import StaticFiles

from ....config import CredentialSettings
from ....errors import (
    DocumentGenerationError,
    EntityNotFoundError,
    PersistenceError,
    StaleResultError,
    UpstreamCredentialError,
    UpstreamFailure,
    ValidationError,
)
from ....logging import get_logger
from ....paths import find_project_root
from ...extraction import parse_data_url
from ...flow import build_flow_config, build_library_service
from ..service import LibraryService


LOG = get_logger("library-frontend")

DEFAULT_STATIC_SUBDIR = os.path.join("frontend", "vocab-ui", "dist")


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return payload


def create_app(
    root_dir: Optional[str] = None,
    *,
    service: Optional[LibraryService] = None,
    settings: Optional[CredentialSettings] = None,
    static_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    serve_static: bool = True,
) -> Starlette:
    """Create a Starlette app exposing the vocabulary library API and optional frontend."""

    project_root = find_project_root(root_dir)
    svc = service or build_library_service(build_flow_config(script_dir=project_root))
    if settings is None:
        settings = svc.extractor.settings if svc.extractor is not None else CredentialSettings(svc.db)
    db = svc.db

    resolved_static_dir: Optional[str] = None
    if serve_static:
        if static_dir is not None:
            candidate = os.path.abspath(os.path.join(project_root, static_dir))
        else:
            candidate = os.path.abspath(os.path.join(project_root, DEFAULT_STATIC_SUBDIR))
        if os.path.isdir(candidate):
            resolved_static_dir = candidate
            LOG.info("Serving static frontend from %s", resolved_static_dir)
        else:
            LOG.warning("Frontend build not found at %s; API will run without static assets.", candidate)
    else:
        LOG.info("Static frontend serving disabled (API only mode).")

    # ---------- health + settings ----------
    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": db.db_path, "apiKeyConfigured": settings.configured})

    async def summary(_: Request) -> JSONResponse:
        return JSONResponse(await run_in_threadpool(db.fetch_summary))

    async def api_key(request: Request) -> JSONResponse:
        if request.method == "PUT":
            payload = await _json_body(request)
            await run_in_threadpool(settings.set, str(payload.get("apiKey") or ""))
        elif request.method == "DELETE":
            await run_in_threadpool(settings.clear)
        return JSONResponse({"configured": settings.configured, "masked": settings.masked()})

    # ---------- extraction ----------
    async def extract(request: Request) -> JSONResponse:
        payload = await _json_body(request)
        image, mime_type = parse_data_url(str(payload.get("image") or ""))
        result = await run_in_threadpool(svc.extract, image, mime_type)
        return JSONResponse(result.to_dict())

    # ---------- pages ----------
    async def pages(request: Request) -> JSONResponse:
        if request.method == "POST":
            payload = await _json_body(request)
            page = await run_in_threadpool(
                svc.save_page,
                str(payload.get("name") or ""),
                str(payload.get("rawText") or ""),
                payload.get("previewImage") or None,
            )
            return JSONResponse(page.to_dict(), status_code=201)
        if _truthy(request.query_params.get("unassigned")):
            items = await run_in_threadpool(svc.list_unassigned_pages)
        else:
            items = await run_in_threadpool(db.list_pages)
        return JSONResponse({"items": [p.to_dict() for p in items], "total": len(items)})

    async def page_detail(request: Request) -> Response:
        page_id = request.path_params["page_id"]
        if request.method == "DELETE":
            if not await run_in_threadpool(svc.delete_page, page_id):
                raise HTTPException(status_code=404, detail="Page not found")
            return Response(status_code=204)
        page = await run_in_threadpool(db.get_page, page_id)
        payload = page.to_dict()
        payload["bookId"] = await run_in_threadpool(db.book_for_page, page_id)
        return JSONResponse(payload)

    async def page_document(request: Request) -> JSONResponse:
        page_id = request.path_params["page_id"]
        context = request.query_params.get("context") or "default"
        handle = await run_in_threadpool(svc.generate_document, page_id, context=context)
        payload = handle.to_dict()
        payload["url"] = f"/api/documents/{handle.handle_id}"
        return JSONResponse(payload, status_code=201)

    # ---------- books ----------
    async def books(request: Request) -> JSONResponse:
        if request.method == "POST":
            payload = await _json_body(request)
            book = await run_in_threadpool(
                svc.create_book,
                str(payload.get("name") or ""),
                payload.get("coverImage") or None,
            )
            return JSONResponse(book.to_dict(), status_code=201)
        items = await run_in_threadpool(db.list_books)
        return JSONResponse({"items": [b.to_dict() for b in items], "total": len(items)})

    async def book_detail(request: Request) -> Response:
        book_id = request.path_params["book_id"]
        if request.method == "DELETE":
            if not await run_in_threadpool(svc.delete_book, book_id):
                raise HTTPException(status_code=404, detail="Book not found")
            return Response(status_code=204)
        book = await run_in_threadpool(db.get_book, book_id)
        book_pages = await run_in_threadpool(svc.pages_for_book, book_id)
        payload = book.to_dict()
        payload["pages"] = [p.to_dict() for p in book_pages]
        return JSONResponse(payload)

    async def book_page(request: Request) -> JSONResponse:
        book_id = request.path_params["book_id"]
        page_id = request.path_params["page_id"]
        if request.method == "PUT":
            changed = await run_in_threadpool(svc.assign, page_id, book_id)
            return JSONResponse({"bookId": book_id, "pageId": page_id, "changed": changed})
        removed = await run_in_threadpool(svc.unassign, page_id, book_id)
        return JSONResponse({"bookId": book_id, "pageId": page_id, "removed": removed})

    async def library(_: Request) -> JSONResponse:
        return JSONResponse(await run_in_threadpool(svc.library_overview))

    # ---------- documents ----------
    async def document(request: Request) -> Response:
        handle_id = request.path_params["handle_id"]
        if request.method == "DELETE":
            if not svc.release_document(handle_id):
                raise HTTPException(status_code=404, detail="Document not found")
            return Response(status_code=204)
        handle = svc.documents.get(handle_id)
        disposition = "attachment" if _truthy(request.query_params.get("download")) else "inline"
        return Response(
            handle.data,
            media_type="application/pdf",
            headers={"Content-Disposition": f"{disposition}; filename*=UTF-8''{quote(handle.filename)}"},
        )

    # ---------- error mapping ----------
    def _error(status: int, detail: str, **extra: Any) -> JSONResponse:
        body: Dict[str, Any] = {"detail": detail}
        body.update(extra)
        return JSONResponse(body, status_code=status)

    async def on_validation(_: Request, exc: Exception) -> JSONResponse:
        return _error(400, str(exc))

    async def on_credential(_: Request, exc: Exception) -> JSONResponse:
        return _error(401, str(exc), redirect="/settings")

    async def on_not_found(_: Request, exc: Exception) -> JSONResponse:
        return _error(404, str(exc))

    async def on_stale(_: Request, exc: Exception) -> JSONResponse:
        return _error(409, str(exc), state="superseded")

    async def on_upstream(_: Request, exc: Exception) -> JSONResponse:
        return _error(502, str(exc))

    async def on_persistence(_: Request, exc: Exception) -> JSONResponse:
        LOG.error("Persistence failure surfaced to client: %s", exc)
        return _error(500, str(exc))

    async def on_generation(_: Request, exc: Exception) -> JSONResponse:
        return _error(500, str(exc), state="generation_failed", retry=True)

    exception_handlers = {
        ValidationError: on_validation,
        UpstreamCredentialError: on_credential,
        EntityNotFoundError: on_not_found,
        StaleResultError: on_stale,
        UpstreamFailure: on_upstream,
        PersistenceError: on_persistence,
        DocumentGenerationError: on_generation,
    }

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/summary", summary, methods=["GET"]),
        Route("/api/settings/api-key", api_key, methods=["GET", "PUT", "DELETE"]),
        Route("/api/extract", extract, methods=["POST"]),
        Route("/api/pages", pages, methods=["GET", "POST"]),
        Route("/api/pages/{page_id:str}", page_detail, methods=["GET", "DELETE"]),
        Route("/api/pages/{page_id:str}/document", page_document, methods=["POST"]),
        Route("/api/books", books, methods=["GET", "POST"]),
        Route("/api/books/{book_id:str}", book_detail, methods=["GET", "DELETE"]),
        Route("/api/books/{book_id:str}/pages/{page_id:str}", book_page, methods=["PUT", "DELETE"]),
        Route("/api/library", library, methods=["GET"]),
        Route("/api/documents/{handle_id:str}", document, methods=["GET", "DELETE"]),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncIterator[None]:
        yield
        svc.close()

    app = Starlette(debug=False, routes=routes, exception_handlers=exception_handlers, lifespan=lifespan)

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    if "*" in origins:
        cors_allow_origins = ["*"]
    else:
        cors_allow_origins = origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if resolved_static_dir:
        app.mount("/", StaticFiles(directory=resolved_static_dir, html=True), name="frontend")
    elif serve_static:
        async def missing_frontend(_: Request) -> JSONResponse:
            return JSONResponse(
                {
                    "detail": "Frontend build missing. Run 'npm install' and 'npm run build' under frontend/vocab-ui/.",
                },
                status_code=503,
            )

        app.add_route("/", missing_frontend, methods=["GET"])
        app.add_route("/{path:path}", missing_frontend, methods=["GET"])
    else:
        async def api_only(_: Request) -> JSONResponse:
            return JSONResponse({"detail": "Vocabulary library API is running. Static frontend disabled."})

        app.add_route("/", api_only, methods=["GET"])
        app.add_route("/{path:path}", api_only, methods=["GET"])

    return app


__all__ = ["create_app"]
