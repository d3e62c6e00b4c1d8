""" Package-wide logging: one stream handler with a compact, optionally colored format """
import logging
import os
import sys
import threading
from enum import Enum
from typing import Dict, Optional, Union

logging.addLevelName(logging.WARNING, "WARN")

loglevel = os.getenv("LOGLEVEL", "INFO")

_PACKAGE_NAME = __name__.split(".")[0]


def _colors_enabled() -> bool:
    env_colors = os.getenv("XORDHT_COLORS")
    if env_colors is not None:
        return env_colors.lower() == "true"
    return sys.stderr.isatty()


class TextStyle:
    """ANSI escape codes (https://en.wikipedia.org/wiki/ANSI_escape_code#Colors), empty if colors are disabled"""

    enabled = _colors_enabled()

    RESET = "\033[0m" if enabled else ""
    BOLD = "\033[1m" if enabled else ""
    RED = "\033[31m" if enabled else ""
    BLUE = "\033[34m" if enabled else ""
    PURPLE = "\033[35m" if enabled else ""
    ORANGE = "\033[38;5;208m" if enabled else ""


class CustomFormatter(logging.Formatter):
    """
    Prints the caller as ``module.function:line`` relative to the package and colors the level name.
    The caller may be overridden with ``logger.info(message, extra={"caller": ...})``.
    """

    LEVEL_COLORS: Dict[int, str] = {
        logging.DEBUG: TextStyle.PURPLE,
        logging.INFO: TextStyle.BLUE,
        logging.WARNING: TextStyle.ORANGE,
        logging.ERROR: TextStyle.RED,
        logging.CRITICAL: TextStyle.RED,
    }

    @staticmethod
    def _relative_caller(record: logging.LogRecord) -> str:
        module_name = record.name
        if module_name.startswith(_PACKAGE_NAME + "."):
            module_name = module_name[len(_PACKAGE_NAME) + 1 :]
        return f"{module_name}.{record.funcName}:{record.lineno}"

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "caller"):
            record.caller = self._relative_caller(record)
        record.levelcolor = self.LEVEL_COLORS.get(record.levelno, "")
        record.bold, record.reset = TextStyle.BOLD, TextStyle.RESET
        return super().format(record)


class StyleMode(Enum):
    NOWHERE = 0
    AMONG_XORDHT = 1
    EVERYWHERE = 2


# logger name (None is the root logger) that carries the default handler in each mode
_MODE_TO_LOGGER = {StyleMode.AMONG_XORDHT: _PACKAGE_NAME, StyleMode.EVERYWHERE: None}

_init_lock = threading.RLock()
_default_handler: Optional[logging.Handler] = None
_current_mode = StyleMode.NOWHERE


def _make_default_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(
        CustomFormatter(
            fmt="{asctime}.{msecs:03.0f} [{bold}{levelcolor}{levelname}{reset}] [{bold}{caller}{reset}] {message}",
            style="{",
            datefmt="%b %d %H:%M:%S",
        )
    )
    return handler


def _initialize_if_necessary() -> None:
    global _default_handler

    with _init_lock:
        if _default_handler is None:
            _default_handler = _make_default_handler()
            use_xordht_log_style(StyleMode.AMONG_XORDHT)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    _initialize_if_necessary()
    return logging.getLogger(name)


def use_xordht_log_style(where: Union[StyleMode, str]) -> None:
    """
    Choose which loggers print with the xordht handler:
    ``nowhere`` (leave logging config to the application), ``among_xordht`` (default) or ``everywhere``
    """
    global _current_mode

    if isinstance(where, str):
        where = StyleMode[where.upper()]

    with _init_lock:
        if _default_handler is None:
            _initialize_if_necessary()

        if _current_mode in _MODE_TO_LOGGER:
            previous = logging.getLogger(_MODE_TO_LOGGER[_current_mode])
            previous.removeHandler(_default_handler)
            previous.propagate = True
            previous.setLevel(logging.NOTSET)

        _current_mode = where

        if _current_mode in _MODE_TO_LOGGER:
            current = logging.getLogger(_MODE_TO_LOGGER[_current_mode])
            current.addHandler(_default_handler)
            current.propagate = False
            current.setLevel(loglevel)
