"""Filesystem helpers and template directory copying."""

from __future__ import annotations

import logging
import os
import posixpath
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Union

if TYPE_CHECKING:
    from draftkit.writers import TemplateWriter

log = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

# A draft variable is a run of non-whitespace characters wrapped in double
# curly braces whose first character is not a period (which would be a helm
# template expression instead).
_DRAFT_VARIABLE_RE = re.compile(r"\{\{[^\t\n\f\r .]+[^\t\n\f\r ]*\}\}")

_ERROR_PRIVILEGE_NOT_HELD = 0x522
_CONFIG_FILE_NAME = "draft.yaml"


class UnsubstitutedVariableError(ValueError):
    """Raised when template output still contains draft variables."""


def exists(path: PathLike) -> bool:
    """Return whether a file or directory exists at ``path``.

    Errors other than "not found" are raised.
    """
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def symlink_with_fallback(oldname: PathLike, newname: PathLike) -> None:
    """Symlink ``newname`` to ``oldname``, moving the file instead on Windows
    when the user lacks the privilege to create symlinks."""
    try:
        os.symlink(oldname, newname)
    except OSError as err:
        if (
            sys.platform == "win32"
            and getattr(err, "winerror", None) == _ERROR_PRIVILEGE_NOT_HELD
        ):
            os.rename(oldname, newname)
        else:
            raise


def ensure_directory(directory: PathLike) -> None:
    """Create ``directory`` if missing; fail if a non-directory is in the way."""
    try:
        is_dir = Path(directory).stat() and Path(directory).is_dir()
    except OSError:
        try:
            os.makedirs(directory, 0o755, exist_ok=True)
        except OSError as err:
            raise OSError(f"could not create {directory}: {err}") from err
        return
    if not is_dir:
        raise NotADirectoryError(f"{directory} must be a directory")


def ensure_file(file: PathLike) -> None:
    """Create an empty ``file`` if missing; fail if it is a directory."""
    try:
        is_dir = Path(file).stat() and Path(file).is_dir()
    except OSError:
        try:
            with open(file, "wb"):
                pass
        except OSError as err:
            raise OSError(f"could not create {file}: {err}") from err
        return
    if is_dir:
        raise IsADirectoryError(f"{file} must not be a directory")


def check_all_variables_substituted(file_content: str) -> None:
    """Raise :class:`UnsubstitutedVariableError` if any draft variable remains."""
    leftovers = _DRAFT_VARIABLE_RE.findall(file_content)
    if leftovers:
        raise UnsubstitutedVariableError(
            f"unsubstituted variable: {', '.join(leftovers)}"
        )


def replace_template_variables(
    template_root: PathLike, src_path: str, custom_inputs: Mapping[str, str]
) -> bytes:
    """Read a template file and substitute every ``{{NAME}}`` from ``custom_inputs``."""
    raw = (Path(template_root) / src_path).read_bytes()
    text = raw.decode("utf-8", errors="surrogateescape")
    for old, new in custom_inputs.items():
        log.debug("replacing %s with %s", old, new)
        text = text.replace("{{" + old + "}}", new)
    return text.encode("utf-8", errors="surrogateescape")


def copy_dir(
    template_root: PathLike,
    src: str,
    dest: str,
    custom_inputs: Mapping[str, str],
    template_writer: "TemplateWriter",
) -> None:
    """Render the template tree at ``template_root/src`` into ``dest``.

    ``draft.yaml`` files are skipped; every other file has its variables
    substituted and is written through ``template_writer``.
    """
    entries = sorted((Path(template_root) / src).iterdir(), key=lambda e: e.name)
    for entry in entries:
        if entry.name == _CONFIG_FILE_NAME:
            continue

        src_path = posixpath.normpath(posixpath.join(src, entry.name))
        dest_path = posixpath.normpath(posixpath.join(dest, entry.name))
        log.debug("Source path: %s Dest path: %s", src_path, dest_path)

        if entry.is_dir():
            template_writer.ensure_directory(dest_path)
            copy_dir(template_root, src_path, dest_path, custom_inputs, template_writer)
            continue

        content = replace_template_variables(template_root, src_path, custom_inputs)
        try:
            check_all_variables_substituted(
                content.decode("utf-8", errors="surrogateescape")
            )
        except UnsubstitutedVariableError as err:
            raise UnsubstitutedVariableError(
                f"error substituting file {src_path}: {err}"
            ) from err
        template_writer.write_file(dest_path, content)