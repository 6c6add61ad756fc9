"""Tests for logger module."""

import logging
from unittest.mock import patch

from chatguard.util.logger import (
    DATE_FORMAT,
    LOG_FORMAT,
    ColorFormatter,
    PromptToolkitHandler,
    get_log_filepath,
    get_logger,
    handle_exception,
    should_use_color,
)


def make_record(level=logging.INFO, msg="hello"):
    return logging.LogRecord(
        name="test", level=level, pathname="test.py", lineno=10,
        msg=msg, args=(), exc_info=None, func="test_func",
    )


class TestShouldUseColor:
    @patch("sys.stderr.isatty")
    def test_tty(self, mock_isatty):
        mock_isatty.return_value = True
        assert should_use_color() is True

    @patch("sys.stderr.isatty")
    def test_no_tty(self, mock_isatty):
        mock_isatty.return_value = False
        assert should_use_color() is False

    @patch("sys.stderr.isatty")
    def test_exception(self, mock_isatty):
        mock_isatty.side_effect = Exception("Error")
        assert should_use_color() is False


class TestColorFormatter:
    def test_levels_are_wrapped_in_their_colour(self):
        formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        assert formatter.format(make_record(logging.ERROR)).startswith("\033[31m")
        assert formatter.format(make_record(logging.DEBUG)).endswith("\033[0m")

    def test_unknown_level_is_left_plain(self):
        formatter = ColorFormatter("%(message)s")
        record = make_record(25)
        assert formatter.format(record) == "hello"


class TestHandlers:
    def test_prompt_toolkit_handler_emits(self):
        handler = PromptToolkitHandler(logging.Formatter("%(message)s"))
        with patch("chatguard.util.logger.print_formatted_text") as mock_print:
            handler.emit(make_record(msg="through the prompt"))
        assert mock_print.call_count == 1

    def test_get_logger_is_configured_once(self):
        first = get_logger("chatguard-test-logger")
        second = get_logger("chatguard-test-logger")
        assert first is second
        assert len(first.handlers) == 2
        assert first.propagate is False

    def test_log_file_path_is_shared(self):
        assert get_log_filepath() == get_log_filepath()
        assert get_log_filepath().suffix == ".log"


def test_handle_exception_logs_errors():
    with patch("chatguard.util.logger.logging.error") as mock_error:
        handle_exception(ValueError, ValueError("boom"), None)
    mock_error.assert_called_once()


def test_handle_exception_passes_keyboard_interrupt_through():
    with patch("sys.__excepthook__") as mock_hook:
        handle_exception(KeyboardInterrupt, KeyboardInterrupt(), None)
    mock_hook.assert_called_once()
