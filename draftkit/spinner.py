"""A small terminal progress spinner."""

from __future__ import annotations

import itertools
import sys
import threading
from typing import Optional, Sequence, TextIO

BRAILLE_FRAMES = ("⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷")

_BOLD_CYAN = "\x1b[1;36m"
_RESET = "\x1b[0m"
_CLEAR_LINE = "\r\x1b[K"


class Spinner:
    """Animates frames on one terminal line from a background thread."""

    def __init__(
        self,
        frames: Sequence[str] = BRAILLE_FRAMES,
        delay: float = 0.1,
        prefix: str = "",
        suffix: str = "",
        writer: Optional[TextIO] = None,
        enabled: Optional[bool] = None,
    ) -> None:
        self.frames = tuple(frames)
        self.delay = delay
        self.prefix = prefix
        self.suffix = suffix
        self._writer = writer
        self._enabled = enabled
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def writer(self) -> TextIO:
        return self._writer if self._writer is not None else sys.stdout

    @property
    def active(self) -> bool:
        return self._thread is not None

    def _should_run(self) -> bool:
        if self._enabled is not None:
            return self._enabled
        isatty = getattr(self.writer, "isatty", None)
        return bool(isatty and isatty())

    def _spin(self) -> None:
        for frame in itertools.cycle(self.frames):
            with self._lock:
                self.writer.write(f"\r{self.prefix}{frame}{self.suffix}")
                self.writer.flush()
            if self._stop.wait(self.delay):
                break

    def start(self) -> None:
        """Begin animating; does nothing if already running or not on a terminal."""
        if self.active or not self._should_run():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop animating and clear the line."""
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        with self._lock:
            self.writer.write(_CLEAR_LINE)
            self.writer.flush()

    def __enter__(self) -> "Spinner":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def create_spinner(msg: str) -> Spinner:
    """Return a spinner showing ``[Draft] msg`` before the animation."""
    isatty = getattr(sys.stdout, "isatty", None)
    tag = "[Draft]"
    if isatty and isatty():
        tag = f"{_BOLD_CYAN}{tag}{_RESET}"
    return Spinner(BRAILLE_FRAMES, 0.1, prefix=f"{tag} {msg} ", suffix=" ")