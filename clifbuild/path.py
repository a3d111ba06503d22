"""Directory layout of a build: source, download, build and dist roots."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import ClassVar

from clifbuild.fsutil import remove_dir_if_exists


@dataclass
class Dirs:
    """The root directories used during a build."""

    source_dir: Path
    download_dir: Path
    build_dir: Path
    dist_dir: Path
    frozen: bool = False


class PathBase(Enum):
    """One of the root directories in :class:`Dirs`."""

    SOURCE = "source_dir"
    DOWNLOAD = "download_dir"
    BUILD = "build_dir"
    DIST = "dist_dir"

    def to_path(self, dirs: Dirs) -> Path:
        return Path(getattr(dirs, self.value))


@dataclass(frozen=True)
class RelPath:
    """A path relative to one of the root directories."""

    base: PathBase
    parts: tuple[str, ...] = ()

    SOURCE: ClassVar[RelPath]
    DOWNLOAD: ClassVar[RelPath]
    BUILD: ClassVar[RelPath]
    DIST: ClassVar[RelPath]
    SCRIPTS: ClassVar[RelPath]
    PATCHES: ClassVar[RelPath]

    def join(self, suffix: str) -> RelPath:
        return RelPath(self.base, (*self.parts, suffix))

    def to_path(self, dirs: Dirs) -> Path:
        return self.base.to_path(dirs).joinpath(*self.parts)

    def ensure_exists(self, dirs: Dirs) -> None:
        self.to_path(dirs).mkdir(parents=True, exist_ok=True)

    def ensure_fresh(self, dirs: Dirs) -> None:
        """Recreate the directory empty."""
        path = self.to_path(dirs)
        remove_dir_if_exists(path)
        path.mkdir(parents=True)


RelPath.SOURCE = RelPath(PathBase.SOURCE)
RelPath.DOWNLOAD = RelPath(PathBase.DOWNLOAD)
RelPath.BUILD = RelPath(PathBase.BUILD)
RelPath.DIST = RelPath(PathBase.DIST)
RelPath.SCRIPTS = RelPath.SOURCE.join("scripts")
RelPath.PATCHES = RelPath.SOURCE.join("patches")