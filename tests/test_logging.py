"""Tests for logging setup"""
import io
import logging

import pytest

from worktree_keeper.utils.logging import ColoredFormatter, get_logger, setup_logging


@pytest.fixture
def root_logger():
    """Restore the root logger after setup_logging replaced its handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TTYStream(io.StringIO):
    def isatty(self):
        return True


def make_record(level=logging.WARNING):
    return logging.LogRecord("registry_service", level, __file__, 1, "lock held", None, None)


class TestGetLogger:
    """Test logger naming."""

    def test_strips_package_prefix(self):
        assert get_logger("worktree_keeper.services.registry_service").name == "registry_service"
        assert get_logger("worktree_keeper.core.orchestrator").name == "core.orchestrator"

    def test_other_names_untouched(self):
        assert get_logger("git.cmd").name == "git.cmd"


class TestSetupLogging:
    """Test root logger configuration."""

    @pytest.mark.parametrize("verbose,debug,expected", [
        (False, False, logging.WARNING),
        (True, False, logging.INFO),
        (False, True, logging.DEBUG),
    ])
    def test_levels(self, root_logger, verbose, debug, expected):
        setup_logging(verbose=verbose, debug=debug)
        assert root_logger.level == expected
        assert len(root_logger.handlers) == 1

    def test_debug_log_file(self, root_logger, temp_dir):
        log_file = temp_dir / "logs" / "debug.log"
        setup_logging(debug=True, log_file=log_file)

        get_logger("worktree_keeper.core.orchestrator").debug("creating worktree")
        for handler in root_logger.handlers:
            handler.flush()

        assert "core.orchestrator - DEBUG - creating worktree" in log_file.read_text()

    def test_log_file_ignored_without_debug(self, root_logger, temp_dir):
        log_file = temp_dir / "debug.log"
        setup_logging(verbose=True, log_file=log_file)
        assert not log_file.exists()


class TestColoredFormatter:
    """Test level coloring."""

    def test_plain_when_not_a_terminal(self):
        formatter = ColoredFormatter(fmt="%(levelname)s %(message)s", stream=io.StringIO())
        assert formatter.format(make_record()) == "WARNING lock held"

    def test_colors_terminal_output(self):
        formatter = ColoredFormatter(fmt="%(levelname)s %(message)s", stream=TTYStream())
        record = make_record()

        assert formatter.format(record) == "\033[33mWARNING\033[0m lock held"
        assert record.levelname == "WARNING"
