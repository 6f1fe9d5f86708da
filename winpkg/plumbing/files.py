"""
Filesystem helpers: unpacking distributions, staging service binaries and managing directories.
"""

import filecmp
import logging
import os
import shutil
from subprocess import CalledProcessError
from typing import Any, Mapping

from jinja2 import Environment, FileSystemLoader

from .common import command, DeletionFailed, Result, State, Unset


LOG = logging.getLogger(__name__)

ENV = Environment(loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates")),
                  autoescape=True, trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)


def exists(path: str) -> bool:
    """
    Probe for a file or directory, e.g. a prerequisite's executable.
    """
    return os.path.exists(path)


def ensure_directory(path: str) -> Result[Unset]:
    """
    Create a directory and any missing parents.
    """
    if os.path.isdir(path):
        return Result(State.unchanged)
    os.makedirs(path)
    LOG.debug("Created directory: %r", path)
    return Result(State.created)


def remove_tree(path: str) -> Result[Unset]:
    """
    Recursively delete a directory, if it exists.
    """
    if not os.path.lexists(path):
        return Result(State.unchanged)
    try:
        shutil.rmtree(path)
    except OSError as ex:
        raise DeletionFailed("Couldn't remove {!r}: {}".format(path, ex)) from ex
    LOG.debug("Removed directory: %r", path)
    return Result(State.success)


def extract_archive(archive: str, dest: str) -> Result[Unset]:
    """
    Unpack an archive into a directory with `tar`, which handles zip files on Windows too.

    Extraction is best-effort: a failing `tar` is logged rather than raised, and callers should
    check for the files they expect.
    """
    try:
        command(["tar", "-xf", archive, "-C", dest])
    except (CalledProcessError, OSError) as ex:
        LOG.warning("Failed to extract %r to %r: %s", archive, dest, ex)
        return Result(State.unchanged)
    LOG.debug("Extracted %r to %r", archive, dest)
    return Result(State.success)


def stage_executable(source: str, target: str) -> Result[Unset]:
    """
    Copy an executable into place, unless an identical copy is already there.
    """
    if os.path.isfile(target):
        if filecmp.cmp(source, target, shallow=False):
            return Result(State.unchanged)
        state = State.success
    else:
        state = State.created
    os.makedirs(os.path.dirname(target), exist_ok=True)
    shutil.copy2(source, target)
    LOG.debug("Staged executable: %r -> %r", source, target)
    return Result(state)


def render(template: str, context: Mapping[str, Any]) -> str:
    return ENV.get_template(template).render(**context)


def write_template(path: str, template: str, context: Mapping[str, Any]) -> Result[Unset]:
    """
    Render a template to a file, leaving the file alone if its content would not change.
    """
    content = render(template, context)
    try:
        with open(path, encoding="utf-8") as f:
            current = f.read()
    except FileNotFoundError:
        state = State.created
    else:
        if current == content:
            return Result(State.unchanged)
        state = State.success
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    LOG.debug("Wrote %r from template %r", path, template)
    return Result(state)
