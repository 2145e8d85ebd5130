"""Write generated test sheets to disk."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from ..logging import get_logger
from ..paths import slugify_for_filename
from .library.constants import DOCUMENT_FILENAME_SUFFIX

if TYPE_CHECKING:
    from .library.service import DocumentHandle

LOG = get_logger("orchestrator-export")


def ensure_dir(path: str) -> str:
    absdir = os.path.abspath(os.path.expanduser(os.path.expandvars(path)))
    if not os.path.isdir(absdir):
        LOG.info(f"Output directory does not exist. Creating: {absdir}")
        os.makedirs(absdir, exist_ok=True)
    else:
        LOG.debug(f"Output directory exists: {absdir}")
    return absdir


def unique_path(base_path: str) -> str:
    if not os.path.exists(base_path):
        return base_path
    stem, ext = os.path.splitext(base_path)
    counter = 1
    while True:
        cand = f"{stem} ({counter}){ext}"
        if not os.path.exists(cand):
            return cand
        counter += 1


def document_filename(list_name: str) -> str:
    """`Unit 1` -> `Unit-1_Vokabeltest.pdf`."""
    return f"{slugify_for_filename(list_name, default='Vokabelliste')}{DOCUMENT_FILENAME_SUFFIX}"


def write_document(handle: "DocumentHandle", output_dir: str) -> str:
    """Save a generated document without overwriting earlier exports."""
    target = unique_path(os.path.join(ensure_dir(output_dir), handle.filename))
    with open(target, "wb") as fh:
        fh.write(handle.data)
    LOG.info(f"Test sheet written: {target} ({handle.page_count} page(s))")
    return target
