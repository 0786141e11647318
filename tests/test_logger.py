"""
Tests for the CLI logger setup.
"""

import logging

import pytest

from dept_records.utils.logger import RedactingFilter, setup_logger

GOOGLE_KEY = "AIza" + "q" * 35


@pytest.fixture
def logger_name(request):
    name = f"dept_records_test.{request.node.name}"
    yield name
    logging.getLogger(name).handlers.clear()


class TestSetupLogger:

    def test_level_and_single_handler(self, logger_name):
        logger = setup_logger(logger_name, log_level="debug")
        setup_logger(logger_name, log_level="debug")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_console_goes_to_stderr(self, logger_name, capsys):
        logger = setup_logger(logger_name, log_format="%(message)s")
        logger.info("parsed 3 tables")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "parsed 3 tables" in captured.err

    def test_file_handler(self, logger_name, tmp_path):
        log_file = tmp_path / "logs" / "dept.log"
        logger = setup_logger(logger_name, log_format="%(message)s", log_file=log_file, overwrite=True)
        logger.warning("Table 0: 62.5% of cells empty")
        for handler in logger.handlers:
            handler.flush()
        assert "62.5% of cells empty" in log_file.read_text(encoding="utf-8")

    def test_api_key_redacted(self, logger_name, tmp_path):
        log_file = tmp_path / "dept.log"
        logger = setup_logger(logger_name, log_format="%(message)s", log_file=log_file)
        logger.error("request to %s failed", f"https://x/generateContent?key={GOOGLE_KEY}")
        for handler in logger.handlers:
            handler.flush()
        content = log_file.read_text(encoding="utf-8")
        assert GOOGLE_KEY not in content
        assert "key=***" in content

    def test_http_library_loggers_quieted(self, logger_name):
        setup_logger(logger_name)
        assert logging.getLogger("httpx").level == logging.WARNING


class TestRedactingFilter:

    def test_clean_record_untouched(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "ratio %.1f", (0.5,), None)
        assert RedactingFilter().filter(record)
        assert record.args == (0.5,)
        assert record.getMessage() == "ratio 0.5"
