"""Read-only access to a repository's files."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, runtime_checkable

log = logging.getLogger(__name__)


class BadPatternError(ValueError):
    """Raised for a malformed glob pattern."""


@runtime_checkable
class RepoReader(Protocol):
    """Read access to the files of a repository."""

    def exists(self, path: str) -> bool:
        """Return whether ``path`` exists."""

    def read_file(self, path: str) -> bytes:
        """Return the contents of ``path``."""

    def find_files(self, path: str, patterns: Sequence[str], max_depth: int) -> List[str]:
        """Return files matching any pattern, searching up to ``max_depth``
        nested sub-directories; 0 limits the search to the root."""

    def get_repo_name(self) -> str:
        """Return the repository's name."""


@runtime_checkable
class VariableExtractor(Protocol):
    """Extracts default variable values from a repository's files."""

    def read_defaults(self, reader: RepoReader) -> Dict[str, str]:
        """Return the defaults found through ``reader``."""

    def matches_language(self, lowerlang: str) -> bool:
        """Return whether this extractor handles the lower-cased language."""

    def get_name(self) -> str:
        """Return the extractor's name."""


def _class_char(pattern: str, i: int) -> tuple:
    if i >= len(pattern) or pattern[i] in "-]":
        raise BadPatternError(f"syntax error in pattern: {pattern!r}")
    if pattern[i] == "\\":
        i += 1
        if i >= len(pattern):
            raise BadPatternError(f"syntax error in pattern: {pattern!r}")
    return pattern[i], i + 1


def _glob_to_regex(pattern: str) -> str:
    sep = re.escape(os.sep)
    parts = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        i += 1
        if c == "*":
            parts.append(f"[^{sep}]*")
        elif c == "?":
            parts.append(f"[^{sep}]")
        elif c == "\\":
            if i >= n:
                raise BadPatternError(f"syntax error in pattern: {pattern!r}")
            parts.append(re.escape(pattern[i]))
            i += 1
        elif c == "[":
            negate = i < n and pattern[i] == "^"
            if negate:
                i += 1
            ranges = []
            count = 0
            while True:
                if i >= n:
                    raise BadPatternError(f"syntax error in pattern: {pattern!r}")
                if pattern[i] == "]" and count > 0:
                    i += 1
                    break
                lo, i = _class_char(pattern, i)
                hi = lo
                if i < n and pattern[i] == "-":
                    hi, i = _class_char(pattern, i + 1)
                count += 1
                if lo == hi:
                    ranges.append(re.escape(lo))
                elif lo < hi:
                    ranges.append(f"{re.escape(lo)}-{re.escape(hi)}")
            if ranges:
                parts.append("[" + ("^" if negate else "") + "".join(ranges) + "]")
            else:
                parts.append("." if negate else "(?!)")
        else:
            parts.append(re.escape(c))
    return "".join(parts)


def _glob_match(pattern: str, name: str) -> bool:
    """Shell-style match of ``name`` against ``pattern``; raises on a bad pattern."""
    return re.fullmatch(_glob_to_regex(pattern), name, re.DOTALL) is not None


@dataclass
class FakeRepoReader:
    """An in-memory reader over relative paths and their contents, for tests."""

    files: Optional[Dict[str, bytes]] = None

    def get_repo_name(self) -> str:
        return "test-repo"

    def exists(self, path: str) -> bool:
        return self.files is not None and path in self.files

    def read_file(self, path: str) -> bytes:
        if self.files is None:
            return b""
        return self.files.get(path, b"")

    def find_files(self, path: str, patterns: Sequence[str], max_depth: int) -> List[str]:
        found: List[str] = []
        if self.files is None:
            return found
        for name in self.files:
            for pattern in patterns:
                if _glob_match(pattern, os.path.basename(name)):
                    depth = len(name.split(os.sep)) - 1
                    if depth <= max_depth:
                        found.append(name)
        return found


class LocalFSReader:
    """Reads a repository from the local filesystem."""

    def get_repo_name(self) -> str:
        """Return the working directory's name as an approximation of the repo name."""
        try:
            cwd = os.getcwd()
        except OSError as err:
            raise OSError(f"unable to get working directory: {err}") from err
        return os.path.basename(cwd)

    def exists(self, path: str) -> bool:
        try:
            os.stat(path)
        except FileNotFoundError:
            return False
        except OSError:
            return True
        return True

    def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def find_files(self, path: str, patterns: Sequence[str], max_depth: int) -> List[str]:
        found: List[str] = []
        for file_path in self._walk(path, max_depth, is_root=True):
            base = os.path.basename(file_path)
            found.extend(file_path for pattern in patterns if _glob_match(pattern, base))
        return found

    def _walk(self, path: str, max_depth: int, is_root: bool = False) -> Iterator[str]:
        if is_root:
            if not Path(path).is_dir() or Path(path).is_symlink():
                os.lstat(path)
                yield path
                return
        if path.count(os.sep) > max_depth:
            log.debug("skip %s", path)
            return
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            child = os.path.normpath(os.path.join(path, entry.name))
            if entry.is_dir(follow_symlinks=False):
                yield from self._walk(child, max_depth)
            else:
                yield child