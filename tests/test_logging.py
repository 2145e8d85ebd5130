import logging

from vocab_automation.logging import ROOT_LOGGER, _coerce_level, get_logger


def test_loggers_share_the_namespace_handlers() -> None:
    first = get_logger("library-db")
    second = get_logger("cli-main")
    root = logging.getLogger(ROOT_LOGGER)

    assert first.name == "vocab.library-db"
    assert second.name == "vocab.cli-main"
    assert first.handlers == [] and second.handlers == []
    assert first.parent is root
    assert root.handlers
    assert root.propagate is False


def test_repeated_calls_do_not_add_handlers() -> None:
    get_logger("a")
    count = len(logging.getLogger(ROOT_LOGGER).handlers)
    get_logger("b")
    get_logger("a")
    assert len(logging.getLogger(ROOT_LOGGER).handlers) == count


def test_level_names_are_coerced() -> None:
    assert _coerce_level("debug") == logging.DEBUG
    assert _coerce_level(" WARN ") == logging.WARNING
    assert _coerce_level("loud") == logging.INFO
    assert _coerce_level(None) == logging.INFO
    assert _coerce_level(logging.ERROR) == logging.ERROR
