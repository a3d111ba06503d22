"""Fetching dependency sources and applying local patches to them."""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from clifbuild.fsutil import copy_dir_recursively, remove_dir_if_exists
from clifbuild.path import Dirs, RelPath
from clifbuild.rustc_info import get_default_sysroot
from clifbuild.siphash import SipHasher
from clifbuild.utils import Command, git_command, retry_spawn_and_wait, spawn_and_wait

STDLIB_SRC = RelPath.BUILD.join("stdlib")

_STDLIB_MANIFEST = """
[workspace]
resolver = "1"
members = ["./library/sysroot"]

[patch.crates-io]
rustc-std-workspace-core = { path = "./library/rustc-std-workspace-core" }
rustc-std-workspace-alloc = { path = "./library/rustc-std-workspace-alloc" }
rustc-std-workspace-std = { path = "./library/rustc-std-workspace-std" }

# Mandatory for correctly compiling compiler-builtins
[profile.dev.package.compiler_builtins]
debug-assertions = false
overflow-checks = false
codegen-units = 10000

[profile.release.package.compiler_builtins]
debug-assertions = false
overflow-checks = false
codegen-units = 10000
"""


def hash_file(path: str | os.PathLike[str]) -> int:
    """Hash the contents of a file (not cryptographically secure)."""
    contents = Path(path).read_bytes()
    hasher = SipHasher()
    hasher.write_usize(len(contents))
    hasher.write(contents)
    return hasher.finish()


def hash_dir(path: str | os.PathLike[str]) -> int:
    """Hash a directory tree by the names and hashes of its entries."""
    sub_hashes: dict[str, int] = {}
    for entry in Path(path).iterdir():
        if entry.is_dir() and not entry.is_symlink():
            sub_hashes[entry.name] = hash_dir(entry)
        else:
            sub_hashes[entry.name] = hash_file(entry)
    hasher = SipHasher()
    hasher.write_usize(len(sub_hashes))
    for name in sorted(sub_hashes):
        hasher.write_str(name)
        hasher.write_u64(sub_hashes[name])
    return hasher.finish()


def _format_hash(value: int) -> str:
    return f"{value:016x}"


@dataclass(frozen=True)
class GitRepo:
    """A pinned revision of a repository hosted on GitHub."""

    user: str
    repo: str
    rev: str
    content_hash: str
    patch_name: str

    def download_dir(self, dirs: Dirs) -> Path:
        return RelPath.DOWNLOAD.join(self.repo).to_path(dirs)

    def source_dir(self) -> RelPath:
        return RelPath.BUILD.join(self.repo)

    def fetch(self, dirs: Dirs) -> None:
        """Download the repository unless an unmodified copy is present."""
        download_dir = self.download_dir(dirs)

        if download_dir.exists():
            actual_hash = _format_hash(hash_dir(download_dir))
            if actual_hash == self.content_hash:
                print(f"[FRESH] {download_dir}", file=sys.stderr)
                return
            print(
                f"Mismatched content hash for {download_dir}: {actual_hash} != "
                f"{self.content_hash}. Downloading again.",
                file=sys.stderr,
            )

        _clone_repo_shallow_github(dirs, download_dir, self.user, self.repo, self.rev)

        source_lockfile = RelPath.PATCHES.to_path(dirs) / f"{self.patch_name}-lock.toml"
        target_lockfile = download_dir / "Cargo.lock"
        if source_lockfile.exists():
            if target_lockfile.exists():
                raise RuntimeError(f"{target_lockfile} already exists")
            shutil.copy(source_lockfile, target_lockfile)
        elif not target_lockfile.exists():
            raise RuntimeError(f"{target_lockfile} is missing")

        actual_hash = _format_hash(hash_dir(download_dir))
        if actual_hash != self.content_hash:
            raise RuntimeError(
                f"Download of {download_dir} failed with mismatched content hash: "
                f"{actual_hash} != {self.content_hash}"
            )

    def patch(self, dirs: Dirs) -> None:
        apply_patches(
            dirs, self.patch_name, self.download_dir(dirs), self.source_dir().to_path(dirs)
        )


RAND_REPO = GitRepo(
    "rust-random", "rand", "9a02c819cc1e4ec6959ae25eafbb5cf6acb68234", "4934f0afb1d1c2ca", "rand"
)
REGEX_REPO = GitRepo(
    "rust-lang", "regex", "061ee815ef2c44101dba7b0b124600fcb03c1912", "dc26aefbeeac03ca", "regex"
)
PORTABLE_SIMD_REPO = GitRepo(
    "rust-lang",
    "portable-simd",
    "4825b2a64d765317066948867e8714674419359b",
    "9e67d07c00f5fb0b",
    "portable-simd",
)
TEST_REPOS = (RAND_REPO, REGEX_REPO, PORTABLE_SIMD_REPO)


def prepare(dirs: Dirs) -> None:
    """Download every repository the test suite needs."""
    RelPath.DOWNLOAD.ensure_exists(dirs)
    for repo in TEST_REPOS:
        repo.fetch(dirs)


def prepare_stdlib(dirs: Dirs, rustc: Path) -> None:
    """Copy and patch the standard library sources of the toolchain."""
    sysroot_src_orig = get_default_sysroot(rustc) / "lib" / "rustlib" / "src" / "rust"
    if not sysroot_src_orig.exists():
        raise FileNotFoundError(f"Standard library sources not found at {sysroot_src_orig}")

    stdlib_src = STDLIB_SRC.to_path(dirs)
    apply_patches(dirs, "stdlib", sysroot_src_orig, stdlib_src)

    (stdlib_src / "Cargo.toml").write_text(_STDLIB_MANIFEST)
    shutil.copy(RelPath.PATCHES.to_path(dirs) / "stdlib-lock.toml", stdlib_src / "Cargo.lock")


def _clone_repo(download_dir: Path, repo: str, rev: str) -> None:
    print(f"[CLONE] {repo}", file=sys.stderr)
    # The repository may already be checked out, so the exit status is ignored.
    clone_cmd = git_command(None, "clone")
    clone_cmd.args += [repo, str(download_dir)]
    clone_cmd.run()

    clean_cmd = git_command(download_dir, "checkout")
    clean_cmd.args += ["--", "."]
    spawn_and_wait(clean_cmd)

    checkout_cmd = git_command(download_dir, "checkout")
    checkout_cmd.args += ["-q", rev]
    spawn_and_wait(checkout_cmd)

    shutil.rmtree(download_dir / ".git")


def _clone_repo_shallow_github(
    dirs: Dirs, download_dir: Path, user: str, repo: str, rev: str
) -> None:
    if os.name == "nt":
        # tar and curl may be missing on Windows; use git instead.
        _clone_repo(download_dir, f"https://github.com/{user}/{repo}.git", rev)
        return

    download_root = RelPath.DOWNLOAD.to_path(dirs)
    archive_url = f"https://github.com/{user}/{repo}/archive/{rev}.tar.gz"
    archive_file = download_root / f"{rev}.tar.gz"
    archive_dir = download_root / f"{repo}-{rev}"

    print(f"[DOWNLOAD] {user}/{repo} from {archive_url}", file=sys.stderr)

    archive_file.unlink(missing_ok=True)
    shutil.rmtree(archive_dir, ignore_errors=True)
    shutil.rmtree(download_dir, ignore_errors=True)

    download_cmd = Command(
        "curl",
        [
            "--max-time", "600",
            "-y", "30",
            "-Y", "10",
            "--connect-timeout", "30",
            "--continue-at", "-",
            "--location",
            "--output", str(archive_file),
            archive_url,
        ],
    )
    retry_spawn_and_wait(5, download_cmd)

    spawn_and_wait(Command("tar", ["xf", str(archive_file)], cwd=download_root))

    archive_dir.rename(download_dir)
    archive_file.unlink()


def _init_git_repo(repo_dir: Path) -> None:
    init_cmd = git_command(repo_dir, "init")
    init_cmd.args.append("-q")
    spawn_and_wait(init_cmd)

    add_cmd = git_command(repo_dir, "add")
    add_cmd.args.append(".")
    spawn_and_wait(add_cmd)

    commit_cmd = git_command(repo_dir, "commit")
    commit_cmd.args += ["-m", "Initial commit", "-q"]
    spawn_and_wait(commit_cmd)


def get_patches(dirs: Dirs, crate_name: str) -> list[Path]:
    """Return the sorted ``.patch`` files whose name after the first ``-`` starts with the crate."""
    patches = []
    for path in RelPath.PATCHES.to_path(dirs).iterdir():
        if path.suffix != ".patch":
            continue
        _, sep, rest = path.name.partition("-")
        if not sep:
            raise ValueError(f"Patch file name {path.name!r} has no '-'")
        if rest.startswith(crate_name):
            patches.append(path)
    return sorted(patches)


def apply_patches(
    dirs: Dirs, crate_name: str, source_dir: str | os.PathLike[str], target_dir: str | os.PathLike[str]
) -> None:
    """Copy ``source_dir`` to a fresh ``target_dir`` git repository and apply patches."""
    source_dir, target_dir = Path(source_dir), Path(target_dir)

    print(f"[COPY] {crate_name} source", file=sys.stderr)

    remove_dir_if_exists(target_dir)
    target_dir.mkdir(parents=True)
    if crate_name == "stdlib":
        (target_dir / "library").mkdir()
        copy_dir_recursively(source_dir / "library", target_dir / "library")
    else:
        copy_dir_recursively(source_dir, target_dir)

    _init_git_repo(target_dir)

    if crate_name == "<none>":
        return

    for patch in get_patches(dirs, crate_name):
        print(f"[PATCH] {target_dir.name!r} <- {patch.name!r}", file=sys.stderr)
        am_cmd = git_command(target_dir, "am")
        am_cmd.args += [str(patch), "-q"]
        spawn_and_wait(am_cmd)