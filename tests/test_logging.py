import sys

import pytest
from loguru import logger

from mpbench.core.logging import configure_logging, scope_prefixes


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    logger.remove()
    logger.add(sys.__stderr__, level="INFO")


def _emit(name: str, level: str, message: str) -> None:
    logger.patch(lambda record: record.update(name=name)).log(level, message)


def test_level_filters_records(capsys):
    configure_logging("WARNING")

    _emit("mpbench.core.tracker", "INFO", "hidden info")
    _emit("mpbench.core.tracker", "WARNING", "visible warning")

    captured = capsys.readouterr().err
    assert "visible warning" in captured
    assert "hidden info" not in captured


def test_debug_scope_enables_single_module(capsys):
    handler_ids = configure_logging("INFO", debug_scopes=["tracker", " "])
    assert len(handler_ids) == 2

    _emit("mpbench.core.tracker", "DEBUG", "tracker debug")
    _emit("mpbench.core.node", "DEBUG", "node debug")
    _emit("mpbench.core.node", "INFO", "node info")

    captured = capsys.readouterr().err
    assert "tracker debug" in captured
    assert "node debug" not in captured
    assert "node info" in captured


def test_debug_level_needs_no_scope_handler():
    assert len(configure_logging("DEBUG", debug_scopes=["tracker"])) == 1


@pytest.mark.parametrize(
    ("scope", "expected"),
    [
        ("tracker", ("mpbench.tracker", "mpbench.core.tracker")),
        (
            "transport.inprocess",
            ("mpbench.transport.inprocess", "mpbench.core.transport.inprocess"),
        ),
        ("mpbench.cli", ("mpbench.cli",)),
        (" .endpoints. ", ("mpbench.endpoints", "mpbench.core.endpoints")),
        ("  ", ()),
    ],
)
def test_scope_prefixes(scope, expected):
    assert scope_prefixes(scope) == expected


def test_scope_does_not_match_sibling_module(capsys):
    configure_logging("INFO", debug_scopes=["node"])

    _emit("mpbench.core.node", "DEBUG", "node debug")
    _emit("mpbench.core.nodes_extra", "DEBUG", "sibling debug")

    captured = capsys.readouterr().err
    assert "node debug" in captured
    assert "sibling debug" not in captured
