"""Tests for logging utilities."""

import json
from collections.abc import Iterator

import pytest
from loguru import logger

from imbue.git_bundle_sync.utils.logging import log_span
from imbue.git_bundle_sync.utils.logging import setup_logging


@pytest.fixture(autouse=True)
def _restore_default_handler() -> Iterator[None]:
    yield
    logger.remove()


def test_setup_logging_writes_human_lines_to_stderr(capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging("INFO")
    logger.info("hello {}", "world")
    logger.debug("hidden")

    captured = capsys.readouterr()
    assert "hello world" in captured.err
    assert "hidden" not in captured.err
    assert captured.out == ""


def test_setup_logging_as_json(capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging("debug", is_json=True)
    logger.debug("structured")

    record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert record["record"]["message"] == "structured"
    assert record["record"]["level"]["name"] == "DEBUG"


def test_log_span_binds_context_and_reports_timing() -> None:
    logger.remove()
    messages: list[str] = []
    logger.add(lambda message: messages.append(str(message)), level="TRACE", format="{level} {message} {extra}")

    with log_span("Syncing {}", "main", url="/srv/repo.git"):
        logger.info("inside")

    assert messages[0].startswith("DEBUG Syncing main")
    assert "'url': '/srv/repo.git'" in messages[1]
    assert messages[2].startswith("TRACE Syncing main [done in")


def test_log_span_reports_failure() -> None:
    logger.remove()
    messages: list[str] = []
    logger.add(lambda message: messages.append(str(message)), level="TRACE", format="{message}")

    with pytest.raises(RuntimeError):
        with log_span("Applying bundle"):
            raise RuntimeError("boom")

    assert "failed after" in messages[-1]
