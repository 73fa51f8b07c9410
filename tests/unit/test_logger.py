"""Tests for structured logging setup and sync_id correlation."""

import json
import logging

import pytest
import structlog

from trade_journal.observability.logger import get_sync_id, new_sync_id, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    level = root.level
    yield
    root.handlers = [
        h for h in root.handlers
        if not isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)
    ]
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()


class TestSyncId:
    def test_new_sync_id_is_current(self):
        sid = new_sync_id()
        assert sid
        assert get_sync_id() == sid


class TestSetupLogging:
    def test_json_lines_carry_context(self, capsys):
        setup_logging("INFO", "json")
        sid = new_sync_id()
        structlog.contextvars.bind_contextvars(account_id="acct-1")

        logging.getLogger("trade_journal.test").info("Synced %d trades", 3)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Synced 3 trades"
        assert record["sync_id"] == sid
        assert record["account_id"] == "acct-1"
        assert record["level"] == "info"

    def test_level_filters(self, capsys):
        setup_logging("WARNING", "console")
        logging.getLogger("trade_journal.test").info("hidden")
        assert "hidden" not in capsys.readouterr().err
