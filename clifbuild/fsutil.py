"""File system helpers."""

from __future__ import annotations

import os
import shutil
from pathlib import Path


def remove_dir_if_exists(path: str | os.PathLike[str]) -> None:
    """Remove a directory tree; a missing directory is not an error."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass


def copy_dir_recursively(source: str | os.PathLike[str], target: str | os.PathLike[str]) -> None:
    """Copy the contents of ``source`` into the existing directory ``target``."""
    source, target = Path(source), Path(target)
    for entry in source.iterdir():
        destination = target / entry.name
        if entry.is_dir():
            destination.mkdir()
            copy_dir_recursively(entry, destination)
        else:
            shutil.copy(entry, destination)


def try_hard_link(src: str | os.PathLike[str], dst: str | os.PathLike[str]) -> None:
    """Hard link ``src`` to ``dst``, copying instead when linking fails."""
    try:
        os.link(src, dst)
    except OSError:
        shutil.copy(src, dst)