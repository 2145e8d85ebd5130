"""Wiring of the vocabulary pipeline from environment, .env and CLI flags."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

from ..config import CredentialSettings, load_base_url, load_model
from ..logging import get_logger
from ..paths import expand_abs, find_project_root, var_dir
from .extraction import ExtractionOrchestrator
from .library import LibraryDatabase, LibraryService


LOG = get_logger("orchestrator-flow")


@dataclass
class FlowConfig:
    repo_root: str
    db_path: Optional[str]
    model_name: str
    base_url: Optional[str]
    output_dir: str
    timeout: float


def build_flow_config(args: Any = None, *, script_dir: str) -> FlowConfig:
    """Create a FlowConfig from CLI args while logging helpful diagnostics."""

    repo_root = find_project_root(script_dir)
    model_name = getattr(args, "model", None) or load_model(script_dir)
    base_url = load_base_url(script_dir)

    user_db = getattr(args, "db", None)
    db_path = expand_abs(user_db) if user_db else None

    user_output_dir = getattr(args, "output_dir", None)
    default_output_dir = os.path.join(var_dir(repo_root), "generated_pdfs")
    output_dir = expand_abs(user_output_dir) if user_output_dir else default_output_dir

    timeout = float(getattr(args, "timeout", None) or 120.0)

    LOG.debug("Flow configuration prepared")
    LOG.debug(f"Project root       : {repo_root}")
    LOG.debug(f"Database override  : {db_path or '-'}")
    LOG.debug(f"OpenAI model       : {model_name}")
    LOG.debug(f"OpenAI base URL    : {base_url or 'default'}")
    LOG.debug(f"Output directory   : {output_dir}")

    return FlowConfig(
        repo_root=repo_root,
        db_path=db_path,
        model_name=model_name,
        base_url=base_url,
        output_dir=output_dir,
        timeout=timeout,
    )


def build_library_service(config: FlowConfig, *, today: Optional[Callable[[], date]] = None) -> LibraryService:
    """SQLite library + OpenAI extractor reading the stored (or env) API key."""
    db = LibraryDatabase(root_dir=config.repo_root, db_path=config.db_path)
    settings = CredentialSettings.from_environment(db, dotenv_dir=config.repo_root)
    extractor = ExtractionOrchestrator(
        settings,
        model_name=config.model_name,
        base_url=config.base_url,
        timeout=config.timeout,
    )
    if today is not None:
        return LibraryService(db, extractor, today=today)
    return LibraryService(db, extractor)


def log_environment_banner() -> None:
    """Print environment information relevant for debugging runs."""

    LOG.info(f"Working directory: {os.getcwd()}")
    LOG.info(f"Python executable: {sys.executable}")
