"""Tests for logging setup."""

from __future__ import annotations

import json
import logging

import pytest

from loadgate._internal.logging import get_logger, setup_logging


def _loadgate_handlers() -> list[logging.Handler]:
    return [h for h in logging.getLogger("loadgate").handlers if getattr(h, "_loadgate_handler", False)]


class TestSetupLogging:
    def test_configures_namespace_logger(self):
        logger = setup_logging(logging.DEBUG)
        assert logger.name == "loadgate"
        assert logger.level == logging.DEBUG
        assert not logger.propagate
        assert len(_loadgate_handlers()) == 1

    def test_repeated_calls_reuse_handler(self):
        setup_logging(logging.INFO)
        setup_logging(logging.WARNING, json_format=True)
        handlers = _loadgate_handlers()
        assert len(handlers) == 1
        assert handlers[0].level == logging.WARNING

    def test_text_output_goes_to_stderr(self, capsys: pytest.CaptureFixture[str]):
        setup_logging(logging.INFO)
        get_logger("engine.session").info("Starting the test")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "loadgate.engine.session: Starting the test" in captured.err

    def test_json_output(self, capsys: pytest.CaptureFixture[str]):
        setup_logging(logging.INFO, json_format=True)
        get_logger("engine.pool").info("Scaled %d -> %d", 1, 2, extra={"vus": 2})
        line = capsys.readouterr().err.strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["logger"] == "loadgate.engine.pool"
        assert entry["message"] == "Scaled 1 -> 2"
        assert entry["vus"] == 2
        assert "timestamp" in entry

    def test_json_output_includes_exception(self, capsys: pytest.CaptureFixture[str]):
        setup_logging(logging.INFO, json_format=True)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").exception("failed")
        entry = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert "ValueError: boom" in entry["exception"]

    def test_level_filters(self, capsys: pytest.CaptureFixture[str]):
        setup_logging(logging.WARNING)
        get_logger("test").info("hidden")
        assert "hidden" not in capsys.readouterr().err


class TestGetLogger:
    def test_child_of_namespace(self):
        assert get_logger("metrics.aggregator").name == "loadgate.metrics.aggregator"
