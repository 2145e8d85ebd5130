from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
from datetime import date
from typing import Any, Callable, Dict, Sequence

from ..errors import (
    DocumentGenerationError,
    PersistenceError,
    UpstreamCredentialError,
    UpstreamFailure,
    ValidationError,
    VocabAutomationError,
)
from ..logging import get_logger
from ..orchestrator import (
    LibraryService,
    build_flow_config,
    build_library_service,
    log_environment_banner,
    write_document,
)
from ..orchestrator.extraction import to_data_url
from ..paths import expand_abs

LOG = get_logger("cli-main")

# Exit codes per error family; anything else unexpected propagates.
EXIT_CODES = (
    (ValidationError, 2),
    (UpstreamCredentialError, 3),
    (UpstreamFailure, 4),
    (PersistenceError, 5),
    (DocumentGenerationError, 6),
)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _service(ns: argparse.Namespace) -> LibraryService:
    config = build_flow_config(ns, script_dir=os.getcwd())
    return build_library_service(config)


def _read_file(path: str, mode: str = "rb") -> Any:
    path = expand_abs(path)
    try:
        if "b" in mode:
            with open(path, mode) as fh:
                return fh.read()
        with open(path, mode, encoding="utf-8") as fh:
            return fh.read()
    except OSError as exc:
        raise ValidationError(f"Datei kann nicht gelesen werden: {path} ({exc.strerror or exc})") from exc
    except UnicodeDecodeError as exc:
        raise ValidationError(f"Datei ist nicht UTF-8-kodiert: {path}") from exc


def _read_image(path: str) -> tuple:
    mime, _ = mimetypes.guess_type(expand_abs(path))
    return _read_file(path), mime or "application/octet-stream"


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"Ungültiges Datum '{value}', erwartet YYYY-MM-DD.") from exc


def _page_summary(page: Any) -> Dict[str, Any]:
    return {"id": page.page_id, "name": page.name, "pairs": len(page.pairs), "createdAt": page.created_at}


def _add_settings_cli(subparsers: argparse._SubParsersAction) -> None:
    settings = subparsers.add_parser("settings", help="Show, set or clear the OpenAI API key.")
    settings_sub = settings.add_subparsers(dest="settings_command", required=True)

    def _creds(ns: argparse.Namespace):
        return _service(ns).extractor.settings

    show = settings_sub.add_parser("show", help="Show whether a key is configured (masked)")

    def _show(ns: argparse.Namespace) -> int:
        creds = _creds(ns)
        _print_json({"configured": creds.configured, "masked": creds.masked()})
        return 0

    show.set_defaults(handler=_show)

    set_cmd = settings_sub.add_parser("set", help="Store a new API key (last write wins)")
    set_cmd.add_argument("api_key")

    def _set(ns: argparse.Namespace) -> int:
        _creds(ns).set(ns.api_key)
        LOG.info("API key saved")
        return 0

    set_cmd.set_defaults(handler=_set)

    clear = settings_sub.add_parser("clear", help="Delete the stored API key")

    def _clear(ns: argparse.Namespace) -> int:
        _creds(ns).clear()
        LOG.info("API key removed")
        return 0

    clear.set_defaults(handler=_clear)


def _add_pages_cli(subparsers: argparse._SubParsersAction) -> None:
    pages = subparsers.add_parser("pages", help="List, show or delete saved vocabulary lists.")
    pages_sub = pages.add_subparsers(dest="pages_command", required=True)

    list_cmd = pages_sub.add_parser("list")
    list_cmd.add_argument("--unassigned", action="store_true", help="Only lists that are not in any book")

    def _list(ns: argparse.Namespace) -> int:
        svc = _service(ns)
        items = svc.list_unassigned_pages() if ns.unassigned else svc.db.list_pages()
        _print_json([_page_summary(p) for p in items])
        return 0

    list_cmd.set_defaults(handler=_list)

    show = pages_sub.add_parser("show")
    show.add_argument("page_id")

    def _show(ns: argparse.Namespace) -> int:
        svc = _service(ns)
        payload = svc.db.get_page(ns.page_id).to_dict()
        payload.pop("previewImage", None)
        payload["bookId"] = svc.db.book_for_page(ns.page_id)
        _print_json(payload)
        return 0

    show.set_defaults(handler=_show)

    delete = pages_sub.add_parser("delete")
    delete.add_argument("page_id")

    def _delete(ns: argparse.Namespace) -> int:
        if not _service(ns).delete_page(ns.page_id):
            LOG.error(f"Page not found: {ns.page_id}")
            return 1
        return 0

    delete.set_defaults(handler=_delete)


def _add_books_cli(subparsers: argparse._SubParsersAction) -> None:
    books = subparsers.add_parser("books", help="Create, list, show or delete books.")
    books_sub = books.add_subparsers(dest="books_command", required=True)

    list_cmd = books_sub.add_parser("list")

    def _list(ns: argparse.Namespace) -> int:
        books = _service(ns).db.list_books()
        _print_json([{"id": b.book_id, "name": b.name, "pages": b.page_count} for b in books])
        return 0

    list_cmd.set_defaults(handler=_list)

    create = books_sub.add_parser("create")
    create.add_argument("--name", required=True)
    create.add_argument("--cover", help="Optional cover image file")

    def _create(ns: argparse.Namespace) -> int:
        cover = None
        if ns.cover:
            data, mime = _read_image(ns.cover)
            cover = to_data_url(data, mime)
        book = _service(ns).create_book(ns.name, cover)
        print(book.book_id)
        return 0

    create.set_defaults(handler=_create)

    show = books_sub.add_parser("show")
    show.add_argument("book_id")

    def _show(ns: argparse.Namespace) -> int:
        svc = _service(ns)
        book = svc.db.get_book(ns.book_id)
        _print_json(
            {
                "id": book.book_id,
                "name": book.name,
                "createdAt": book.created_at,
                "pages": [_page_summary(p) for p in svc.pages_for_book(ns.book_id)],
            }
        )
        return 0

    show.set_defaults(handler=_show)

    delete = books_sub.add_parser("delete", help="Delete a book; its lists stay in the library")
    delete.add_argument("book_id")

    def _delete(ns: argparse.Namespace) -> int:
        if not _service(ns).delete_book(ns.book_id):
            LOG.error(f"Book not found: {ns.book_id}")
            return 1
        return 0

    delete.set_defaults(handler=_delete)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db", help="Path to the library SQLite file (default: var/library/vocabulary.sqlite3)")


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="vocab-auto",
        description="Extract vocabulary lists from photos, organize them into books and print test sheets.",
    )
    _add_common(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Create/ensure the library DB schema exists")

    def _init(ns: argparse.Namespace) -> int:
        path = _service(ns).db.db_path
        LOG.info(f"Library DB ready at: {path}")
        print(path)
        return 0

    init.set_defaults(handler=_init)

    _add_settings_cli(subparsers)

    extract = subparsers.add_parser("extract", help="Send a photo of a vocabulary list to the vision model.")
    extract.add_argument("--image", required=True, help="Path to the photo (JPG/PNG)")
    extract.add_argument("--model", help="Override the OpenAI model (default: VOCAB_OPENAI_MODEL or gpt-5-mini)")
    extract.add_argument("--save", metavar="NAME", help="Save the result as a list with this name")
    extract.add_argument("--no-preview", action="store_true", help="Do not store the photo with the saved list")

    def _extract(ns: argparse.Namespace) -> int:
        svc = _service(ns)
        data, mime = _read_image(ns.image)
        result = svc.extract(data, mime)
        if ns.save:
            preview = None if ns.no_preview else to_data_url(data, mime)
            page = svc.save_page(ns.save, result.raw_text, preview)
            _print_json(_page_summary(page))
        else:
            print(result.raw_text)
        return 0

    extract.set_defaults(handler=_extract)

    save = subparsers.add_parser("save", help="Save CSV text (file or '-' for stdin) as a vocabulary list.")
    save.add_argument("--name", required=True)
    save.add_argument("--input", required=True)

    def _save(ns: argparse.Namespace) -> int:
        if ns.input == "-":
            raw = sys.stdin.read()
        else:
            raw = _read_file(ns.input, "r")
        page = _service(ns).save_page(ns.name, raw)
        _print_json(_page_summary(page))
        return 0

    save.set_defaults(handler=_save)

    _add_pages_cli(subparsers)
    _add_books_cli(subparsers)

    assign = subparsers.add_parser("assign", help="Put a list into a book (moves it out of any other book).")
    assign.add_argument("--page", required=True)
    assign.add_argument("--book", required=True)

    def _assign(ns: argparse.Namespace) -> int:
        changed = _service(ns).assign(ns.page, ns.book)
        LOG.info("Assignment %s", "updated" if changed else "unchanged (already in book)")
        return 0

    assign.set_defaults(handler=_assign)

    unassign = subparsers.add_parser("unassign", help="Remove a list from a book.")
    unassign.add_argument("--page", required=True)
    unassign.add_argument("--book", required=True)
    def _unassign(ns: argparse.Namespace) -> int:
        if not _service(ns).unassign(ns.page, ns.book):
            LOG.warning(f"List {ns.page} was not in book {ns.book}")
        return 0

    unassign.set_defaults(handler=_unassign)

    pdf = subparsers.add_parser("pdf", help="Write the printable test sheet for a list.")
    pdf.add_argument("--page", required=True)
    pdf.add_argument("--output-dir", default=None, help="Default: var/generated_pdfs at repo root")
    pdf.add_argument("--date", help="Date printed on the sheet (YYYY-MM-DD, default: today)")

    def _pdf(ns: argparse.Namespace) -> int:
        config = build_flow_config(ns, script_dir=os.getcwd())
        fixed = _parse_date(ns.date) if ns.date else None
        svc = build_library_service(config, today=(lambda: fixed) if fixed else None)
        handle = svc.generate_document(ns.page, context="cli")
        try:
            print(write_document(handle, config.output_dir))
        finally:
            svc.release_document(handle.handle_id)
        return 0

    pdf.set_defaults(handler=_pdf)

    serve = subparsers.add_parser("serve", help="Run the library API and optional frontend server.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8002)
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    serve.add_argument("--log-level", default="info")
    serve.add_argument("--static-dir", help="Override static frontend directory relative to project root")
    serve.add_argument("--api-only", action="store_true", help="Serve JSON API without static frontend")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )

    def _serve(ns: argparse.Namespace) -> int:
        from ..orchestrator.library.frontend import create_app
        import uvicorn

        log_environment_banner()
        app = create_app(
            root_dir=os.getcwd(),
            service=_service(ns),
            static_dir=ns.static_dir,
            allow_origins=ns.allow_origins,
            serve_static=not ns.api_only,
        )
        uvicorn.run(app, host=ns.host, port=ns.port, reload=ns.reload, log_level=ns.log_level)
        return 0

    serve.set_defaults(handler=_serve)

    args = parser.parse_args(provided)
    handler: Callable[[argparse.Namespace], int] = args.handler
    try:
        code = handler(args)
    except VocabAutomationError as exc:
        code = next((c for kind, c in EXIT_CODES if isinstance(exc, kind)), 1)
        LOG.error(f"{type(exc).__name__}: {exc}")
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
