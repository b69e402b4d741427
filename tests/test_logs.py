"""Tests for logging setup."""

from __future__ import annotations

import logging

from autounseal.logs import setup_logging


class TestSetupLogging:

    def test_level_and_handler(self):
        log = setup_logging("DEBUG")
        assert log.name == "autounseal"
        assert log.level == logging.DEBUG
        assert len(log.handlers) == 1

    def test_repeated_calls_do_not_stack(self):
        setup_logging()
        log = setup_logging()
        assert len(log.handlers) == 1

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "autounseal.log"
        log = setup_logging("INFO", log_file)
        logging.getLogger("autounseal.reconciler").info("tick done")
        for handler in log.handlers:
            handler.flush()
        assert "tick done" in log_file.read_text()
        setup_logging()

    def test_unknown_level_defaults_to_info(self):
        assert setup_logging("CHATTY").level == logging.INFO
