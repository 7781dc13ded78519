"""
Tests: logging setup.

Covers:
    - JSON lines carry workflow context passed via extra=
    - console lines carry the run/step suffix
    - LOG_FORMAT / LOG_LEVEL overrides
"""

import json
import logging

from flask import g

from certflow.middleware.logging_config import (
    ConsoleFormatter,
    JSONFormatter,
    RequestIdFilter,
    configure_logging,
)


def _record(msg="Step approved", **extra):
    record = logging.LogRecord("certflow.services.workflow_orchestrator", logging.INFO, __file__, 1,
                               msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_context(self):
        line = JSONFormatter().format(_record(workflow_run_id=7, step_type="hazard_extraction"))
        entry = json.loads(line)
        assert entry["msg"] == "Step approved"
        assert entry["workflow_run_id"] == 7
        assert entry["step_type"] == "hazard_extraction"
        assert "project_id" not in entry

    def test_console_suffix(self):
        line = ConsoleFormatter().format(_record(workflow_run_id=7, step_type="hazard_extraction"))
        assert line.endswith("Step approved [run=7 step=hazard_extraction]")

    def test_request_id_filter(self, app):
        with app.test_request_context("/api/v1/projects"):
            g.request_id = "req-42"
            record = _record()
            assert RequestIdFilter().filter(record) is True
            assert record.request_id == "req-42"


class TestConfigureLogging:
    def test_format_and_level_from_env(self, app, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "warning")
        try:
            configure_logging(app)
            root = logging.getLogger()
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING
        finally:
            monkeypatch.delenv("LOG_FORMAT")
            monkeypatch.delenv("LOG_LEVEL")
            configure_logging(app)

    def test_testing_app_uses_console(self, app):
        configure_logging(app)
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)
