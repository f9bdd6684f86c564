"""Logging setup for worktree-keeper.

Everything goes through the stdlib ``logging`` module. Console output is on
stderr so that stdout stays reserved for machine-readable results such as the
path printed by ``add``.
"""
import copy
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, TextIO

PACKAGE_PREFIXES = ("worktree_keeper.", "services.")

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SHORT_FORMAT = "[%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    LEVEL_COLORS: Dict[int, str] = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, stream: Optional[TextIO] = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.stream = stream if stream is not None else sys.stderr

    def use_color(self) -> bool:
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None or not self.use_color():
            return super().format(record)
        # Other handlers share the record, so color a copy
        colored = copy.copy(record)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def level_for(verbose: bool = False, debug: bool = False) -> int:
    if debug:
        return logging.DEBUG
    return logging.INFO if verbose else logging.WARNING


def _debug_file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    # One log per run
    handler = logging.FileHandler(log_file, mode="w")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=DETAILED_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(verbose: bool = False, debug: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure the root logger for one CLI run.

    Args:
        verbose: Show INFO messages
        debug: Show DEBUG messages with timestamps and module names
        log_file: Also write the debug log here (debug mode only)
    """
    level = level_for(verbose, debug)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handlers: List[logging.Handler] = []
    if debug and log_file is not None:
        handlers.append(_debug_file_handler(log_file))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    if debug:
        console.setFormatter(ColoredFormatter(fmt=DETAILED_FORMAT, datefmt=DATE_FORMAT, stream=sys.stderr))
    else:
        console.setFormatter(ColoredFormatter(fmt=SHORT_FORMAT, stream=sys.stderr))
    handlers.append(console)

    for handler in handlers:
        root_logger.addHandler(handler)

    # GitPython logs every spawned command at DEBUG
    logging.getLogger("git").setLevel(logging.INFO if debug else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a logger named after the module, without the package prefix.

    ``worktree_keeper.services.registry_service`` logs as ``registry_service``.
    """
    for prefix in PACKAGE_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):]
    return logging.getLogger(name)
