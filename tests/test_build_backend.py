import subprocess
from pathlib import Path
from unittest import mock

import pytest

from clifbuild.build_backend import build_backend
from clifbuild.path import Dirs
from clifbuild.utils import CommandFailed, Compiler

TRIPLE = "x86_64-unknown-linux-gnu"
DYLIB = "librustc_codegen_cranelift.so"


@pytest.fixture
def dirs(tmp_path):
    return Dirs(
        source_dir=tmp_path / "src",
        download_dir=tmp_path / "dl",
        build_dir=tmp_path / "build",
        dist_dir=tmp_path / "dist",
    )


@pytest.fixture
def compiler():
    return Compiler(
        cargo=Path("cargo"), rustc=Path("rustc"), rustdoc=Path("rustdoc"), triple=TRIPLE
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ["CI", "CI_OPT", "CARGO_BUILD_INCREMENTAL", "RUSTFLAGS",
                 "CARGO_ENCODED_RUSTFLAGS", "GITHUB_ACTIONS"]:
        monkeypatch.delenv(name, raising=False)


class FakeRun:
    def __init__(self, cargo_status=0):
        self.calls = []
        self.cargo_status = cargo_status

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append((argv, kwargs))
        if "--print" in argv:
            return subprocess.CompletedProcess(argv, 0, stdout=DYLIB + "\n")
        return subprocess.CompletedProcess(argv, self.cargo_status, stdout="")

    def cargo_call(self):
        return next((argv, kw) for argv, kw in self.calls if argv[0] == "cargo")


def test_release_build(dirs, compiler, monkeypatch):
    monkeypatch.setenv("RUSTFLAGS", "-Copt-level=1")
    fake = FakeRun()
    with mock.patch("subprocess.run", fake):
        result = build_backend(dirs, "release", compiler, True)

    assert result == dirs.build_dir / "cg_clif" / TRIPLE / "release" / DYLIB
    argv, kwargs = fake.cargo_call()
    assert argv[1] == "build"
    assert "--release" in argv
    assert argv[argv.index("--features") + 1] == "unstable-features"
    env = kwargs["env"]
    assert env["CARGO_ENCODED_RUSTFLAGS"].split("\x1f") == [
        "-Copt-level=1",
        "-Zallow-features=rustc_private",
    ]
    assert env["CARGO_BUILD_INCREMENTAL"] == "true"


def test_debug_build_without_unstable_features(dirs, compiler):
    fake = FakeRun()
    with mock.patch("subprocess.run", fake):
        result = build_backend(dirs, "debug", compiler, False)

    assert result.parent.name == "debug"
    argv, _ = fake.cargo_call()
    assert "--release" not in argv
    assert "--features" not in argv


def test_ci_denies_warnings_and_enables_checks(dirs, compiler, monkeypatch):
    monkeypatch.setenv("CI", "1")
    fake = FakeRun()
    with mock.patch("subprocess.run", fake):
        result = build_backend(dirs, "release", compiler, True)

    assert result == dirs.build_dir / "cg_clif" / TRIPLE / "release" / DYLIB
    _, kwargs = fake.cargo_call()
    env = kwargs["env"]
    assert "-Dwarnings" in env["CARGO_ENCODED_RUSTFLAGS"].split("\x1f")
    assert env["CARGO_PROFILE_RELEASE_DEBUG_ASSERTIONS"] == "true"
    assert env["CARGO_PROFILE_RELEASE_OVERFLOW_CHECKS"] == "true"
    assert env["CARGO_BUILD_INCREMENTAL"] == "false"


def test_unknown_channel_is_rejected(dirs, compiler):
    fake = FakeRun()
    with mock.patch("subprocess.run", fake), pytest.raises(ValueError):
        build_backend(dirs, "fast", compiler, True)
    assert fake.calls == []


def test_failed_cargo_build_raises(dirs, compiler):
    with mock.patch("subprocess.run", FakeRun(cargo_status=101)), pytest.raises(CommandFailed):
        build_backend(dirs, "release", compiler, True)