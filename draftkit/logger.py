"""Log formatting and output routing for the command line."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, TextIO

_BOLD_CYAN = "\x1b[1;36m"
_BOLD_RED = "\x1b[1;31m"
_RESET = "\x1b[0m"
_ERROR_MARKERS = ("Error", "Fatal", "Panic")


def _color_enabled() -> bool:
    if "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb":
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


class DraftFormatter(logging.Formatter):
    """Formats errors as ``Level: message`` and everything else as ``[Draft] message``."""

    def __init__(self, use_color: Optional[bool] = None) -> None:
        super().__init__()
        self.use_color = _color_enabled() if use_color is None else use_color

    def _paint(self, code: str, text: str) -> str:
        return f"{code}{text}{_RESET}" if self.use_color else text

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.levelno >= logging.ERROR:
            level = record.levelname.title()
            return f"{self._paint(_BOLD_RED, level)}: {message}"
        return f"{self._paint(_BOLD_CYAN, '[Draft]')} {message}"


class OutputSplitter:
    """A text stream sending error lines to stderr and the rest to stdout."""

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None) -> None:
        self._stdout = stdout
        self._stderr = stderr

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def write(self, data: str) -> int:
        if any(marker in data for marker in _ERROR_MARKERS):
            return self.stderr.write(data)
        return self.stdout.write(data)

    def flush(self) -> None:
        self.stdout.flush()
        self.stderr.flush()