import subprocess
from pathlib import Path
from unittest import mock

import pytest

from clifbuild.rustc_info import (
    get_cargo_path,
    get_default_sysroot,
    get_file_name,
    get_host_triple,
    get_rustc_path,
    get_rustdoc_path,
    get_toolchain_name,
)


def _fake_run(stdout, calls):
    def run(argv, **kwargs):
        calls.append(list(argv))
        return subprocess.CompletedProcess(argv, 0, stdout=stdout)

    return run


def test_get_host_triple():
    calls = []
    out = "rustc 1.0\nbinary: rustc\nhost: my-host-triple\nrelease: 1.0\n"
    with mock.patch("subprocess.run", side_effect=_fake_run(out, calls)):
        assert get_host_triple(Path("/r/rustc")) == "my-host-triple"
    assert calls == [["/r/rustc", "-vV"]]


def test_get_host_triple_missing():
    with mock.patch("subprocess.run", side_effect=_fake_run("rustc 1.0\n", [])):
        with pytest.raises(RuntimeError):
            get_host_triple(Path("rustc"))


def test_get_toolchain_name():
    calls = []
    out = "nightly-some-host (overridden)\n"
    with mock.patch("subprocess.run", side_effect=_fake_run(out, calls)):
        assert get_toolchain_name() == "nightly-some-host"
    assert calls == [["rustup", "show", "active-toolchain"]]


def test_get_toolchain_name_without_space():
    with mock.patch("subprocess.run", side_effect=_fake_run("nightly\n", [])):
        with pytest.raises(RuntimeError):
            get_toolchain_name()


def test_tool_paths_from_environment(monkeypatch):
    monkeypatch.setenv("CARGO", "/opt/cargo")
    monkeypatch.setenv("RUSTC", "/opt/rustc")
    monkeypatch.setenv("RUSTDOC", "/opt/rustdoc")
    with mock.patch("subprocess.run") as run:
        assert get_cargo_path() == Path("/opt/cargo")
        assert get_rustc_path() == Path("/opt/rustc")
        assert get_rustdoc_path() == Path("/opt/rustdoc")
    assert run.call_count == 0


def test_tool_paths_from_rustup(monkeypatch):
    monkeypatch.delenv("RUSTC", raising=False)
    calls = []
    with mock.patch("subprocess.run", side_effect=_fake_run("/tc/bin/rustc\n", calls)):
        assert get_rustc_path() == Path("/tc/bin/rustc")
    assert calls == [["rustup", "which", "rustc"]]


def test_get_default_sysroot():
    calls = []
    with mock.patch("subprocess.run", side_effect=_fake_run("/tc/sysroot\n", calls)):
        assert get_default_sysroot(Path("rustc")) == Path("/tc/sysroot")
    assert calls == [["rustc", "--print", "sysroot"]]


def test_get_file_name():
    calls = []
    with mock.patch("subprocess.run", side_effect=_fake_run("libcg.so\n", calls)):
        assert get_file_name(Path("rustc"), "cg", "dylib") == "libcg.so"
    assert calls[0][-3:] == ["--print", "file-names", "-"]
    assert calls[0][1:5] == ["--crate-name", "cg", "--crate-type", "dylib"]


def test_get_file_name_rejects_multiple_lines():
    with mock.patch("subprocess.run", side_effect=_fake_run("a_cg\nb_cg\n", [])):
        with pytest.raises(RuntimeError):
            get_file_name(Path("rustc"), "cg", "bin")


def test_get_file_name_requires_crate_name():
    with mock.patch("subprocess.run", side_effect=_fake_run("other\n", [])):
        with pytest.raises(RuntimeError):
            get_file_name(Path("rustc"), "cg", "bin")