"""Console logging for the CLI, the API server and the library modules.

All loggers live under the ``vocab`` namespace. Handlers are attached once to
that parent logger; ``get_logger("library-db")`` only returns a child, so
uvicorn, httpx and the openai SDK keep their own logging untouched.

Environment:
- ``LOG_LEVEL``: level name (default INFO); unknown names fall back to INFO.
- ``LOG_FILE``: optional path, appended to in addition to the console.
"""

import logging
import os
from typing import Optional, Union

ROOT_LOGGER = "vocab"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: Optional[Union[str, int]]) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        level = logging.getLevelName(value.strip().upper())
        if isinstance(level, int):
            return level
    return logging.INFO


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if getattr(root, "_vocab_configured", False):
        return root

    level = _coerce_level(os.environ.get("LOG_LEVEL"))
    root.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # stderr; stdout carries CLI results (JSON, ids, paths)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            root.warning(f"LOG_FILE {log_file} could not be opened ({exc}); logging to console only")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    root.propagate = False
    setattr(root, "_vocab_configured", True)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return the ``vocab.<name>`` logger, configuring the namespace on first use."""
    _configure_root()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
