"""Destinations for rendered template files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Protocol, runtime_checkable

from draftkit import osutil

_DEFAULT_WRITE_MODE = 0o644


@runtime_checkable
class TemplateWriter(Protocol):
    """Something rendered template files can be written to."""

    def write_file(self, path: str, data: bytes) -> None:
        """Store ``data`` at ``path``."""

    def ensure_directory(self, path: str) -> None:
        """Make sure the directory ``path`` is available."""


@dataclass
class FileMapWriter:
    """Collects written files in memory, keyed by path."""

    file_map: Dict[str, bytes] = field(default_factory=dict)

    def write_file(self, path: str, data: bytes) -> None:
        self.file_map[path] = data

    def ensure_directory(self, path: str) -> None:
        """Directories are implicit in the file map, so this does nothing."""


@dataclass
class LocalFSWriter:
    """Writes files to the local filesystem."""

    write_mode: int = 0

    def write_file(self, path: str, data: bytes) -> None:
        mode = self.write_mode or _DEFAULT_WRITE_MODE
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)

    def ensure_directory(self, path: str) -> None:
        osutil.ensure_directory(path)