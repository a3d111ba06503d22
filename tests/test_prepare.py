import subprocess
from pathlib import Path
from unittest import mock

import pytest

from clifbuild.path import Dirs, RelPath
from clifbuild.prepare import (
    GitRepo,
    apply_patches,
    get_patches,
    hash_dir,
    hash_file,
)


@pytest.fixture
def dirs(tmp_path):
    return Dirs(
        source_dir=tmp_path / "src",
        download_dir=tmp_path / "dl",
        build_dir=tmp_path / "build",
        dist_dir=tmp_path / "dist",
    )


class FakeRun:
    def __init__(self, on_call=None):
        self.calls = []
        self.on_call = on_call

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        if self.on_call is not None:
            self.on_call(argv, kwargs)
        return subprocess.CompletedProcess(argv, 0, stdout="")


def _make_tree(root: Path) -> None:
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("alpha")
    (root / "sub" / "b.txt").write_text("beta")


def test_hash_file_depends_only_on_contents(tmp_path):
    (tmp_path / "one").write_text("same")
    (tmp_path / "two").write_text("same")
    (tmp_path / "three").write_text("different")
    assert hash_file(tmp_path / "one") == hash_file(tmp_path / "two")
    assert hash_file(tmp_path / "one") != hash_file(tmp_path / "three")


def test_hash_dir_equal_for_identical_trees(tmp_path):
    _make_tree(tmp_path / "x")
    _make_tree(tmp_path / "y")
    assert hash_dir(tmp_path / "x") == hash_dir(tmp_path / "y")


def test_hash_dir_changes_with_nested_content(tmp_path):
    _make_tree(tmp_path / "x")
    before = hash_dir(tmp_path / "x")
    (tmp_path / "x" / "sub" / "b.txt").write_text("gamma")
    assert hash_dir(tmp_path / "x") != before


def test_hash_dir_changes_with_file_name(tmp_path):
    _make_tree(tmp_path / "x")
    before = hash_dir(tmp_path / "x")
    (tmp_path / "x" / "a.txt").rename(tmp_path / "x" / "c.txt")
    assert hash_dir(tmp_path / "x") != before


def test_repo_directories(dirs):
    repo = GitRepo("someone", "thing", "abc", "0" * 16, "thing")
    assert repo.download_dir(dirs) == dirs.download_dir / "thing"
    assert repo.source_dir() == RelPath.BUILD.join("thing")
    assert repo.source_dir().to_path(dirs) == dirs.build_dir / "thing"


def test_get_patches_filters_and_sorts(dirs):
    patches = RelPath.PATCHES.to_path(dirs)
    patches.mkdir(parents=True)
    for name in ["0003-rand-bar.patch", "0002-regex-x.patch", "0001-rand-foo.patch",
                 "notes.txt", "rand-lock.toml"]:
        (patches / name).write_text("")
    assert get_patches(dirs, "rand") == [
        patches / "0001-rand-foo.patch",
        patches / "0003-rand-bar.patch",
    ]


def test_get_patches_rejects_name_without_dash(dirs):
    patches = RelPath.PATCHES.to_path(dirs)
    patches.mkdir(parents=True)
    (patches / "broken.patch").write_text("")
    with pytest.raises(ValueError):
        get_patches(dirs, "rand")


def test_apply_patches_copies_and_applies_in_order(dirs, tmp_path):
    patches = RelPath.PATCHES.to_path(dirs)
    patches.mkdir(parents=True)
    (patches / "0002-crate-second.patch").write_text("")
    (patches / "0001-crate-first.patch").write_text("")
    (patches / "0001-other-x.patch").write_text("")
    source = tmp_path / "orig"
    _make_tree(source)
    target = tmp_path / "patched"
    target.mkdir()
    (target / "stale.txt").write_text("old")

    fake = FakeRun()
    with mock.patch("subprocess.run", fake):
        apply_patches(dirs, "crate", source, target)

    assert (target / "sub" / "b.txt").read_text() == "beta"
    assert not (target / "stale.txt").exists()
    git_subcommands = [call[9] for call in fake.calls]
    assert git_subcommands == ["init", "add", "commit", "am", "am"]
    applied = [call[10] for call in fake.calls if call[9] == "am"]
    assert applied == [
        str(patches / "0001-crate-first.patch"),
        str(patches / "0002-crate-second.patch"),
    ]


def test_apply_patches_none_skips_patching(dirs, tmp_path):
    source = tmp_path / "orig"
    _make_tree(source)
    target = tmp_path / "patched"

    fake = FakeRun()
    with mock.patch("subprocess.run", fake):
        apply_patches(dirs, "<none>", source, target)

    assert (target / "a.txt").read_text() == "alpha"
    assert [call[9] for call in fake.calls] == ["init", "add", "commit"]


def test_apply_patches_stdlib_copies_library_only(dirs, tmp_path):
    patches = RelPath.PATCHES.to_path(dirs)
    patches.mkdir(parents=True)
    source = tmp_path / "rust"
    (source / "library" / "core").mkdir(parents=True)
    (source / "library" / "core" / "lib.rs").write_text("core")
    (source / "src").mkdir()
    (source / "src" / "other.rs").write_text("other")
    target = tmp_path / "stdlib"

    with mock.patch("subprocess.run", FakeRun()):
        apply_patches(dirs, "stdlib", source, target)

    assert (target / "library" / "core" / "lib.rs").read_text() == "core"
    assert not (target / "src").exists()


def test_fetch_fresh_download_is_kept(dirs):
    repo_dir = dirs.download_dir / "thing"
    _make_tree(repo_dir)
    repo = GitRepo("someone", "thing", "abc", f"{hash_dir(repo_dir):016x}", "thing")

    fake = FakeRun()
    with mock.patch("subprocess.run", fake):
        repo.fetch(dirs)

    assert fake.calls == []
    assert (repo_dir / "a.txt").read_text() == "alpha"


def _download_simulator(repo):
    def on_call(argv, kwargs):
        if argv[0] == "curl":
            Path(argv[argv.index("--output") + 1]).write_bytes(b"archive")
        elif argv[0] == "tar":
            unpacked = Path(kwargs["cwd"]) / f"{repo.repo}-{repo.rev}"
            unpacked.mkdir()
            (unpacked / "Cargo.lock").write_text("lock")
            (unpacked / "lib.rs").write_text("fn main() {}")
    return on_call


def test_fetch_downloads_and_verifies_hash(dirs, tmp_path):
    reference = tmp_path / "reference"
    reference.mkdir()
    (reference / "Cargo.lock").write_text("lock")
    (reference / "lib.rs").write_text("fn main() {}")
    repo = GitRepo("someone", "thing", "abc123", f"{hash_dir(reference):016x}", "thing")
    dirs.download_dir.mkdir(parents=True)

    fake = FakeRun()
    fake.on_call = _download_simulator(repo)
    with mock.patch("subprocess.run", fake):
        repo.fetch(dirs)

    download_dir = repo.download_dir(dirs)
    assert (download_dir / "lib.rs").read_text() == "fn main() {}"
    assert not (dirs.download_dir / "abc123.tar.gz").exists()
    assert [call[0] for call in fake.calls] == ["curl", "tar"]


def test_fetch_raises_on_hash_mismatch(dirs):
    repo = GitRepo("someone", "thing", "abc123", "0" * 16, "thing")
    dirs.download_dir.mkdir(parents=True)

    fake = FakeRun()
    fake.on_call = _download_simulator(repo)
    with mock.patch("subprocess.run", fake), pytest.raises(RuntimeError):
        repo.fetch(dirs)