import os
from pathlib import Path

import pytest

from clifbuild.cli import Action, Options, UsageError, main, parse_args
from clifbuild.utils import SysrootKind

_TOUCHED_VARS = (
    "RUST_BACKTRACE",
    "CG_CLIF_DISABLE_INCR_CACHE",
    "CARGO_BUILD_INCREMENTAL",
    "CG_CLIF_ENABLE_VERIFIER",
    "CARGO_TARGET_DIR",
    "RUSTC",
    "RUSTDOC",
    "CARGO",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in _TOUCHED_VARS:
        monkeypatch.setenv(name, "x")
    for name in ("CI", "CI_OPT", "GITHUB_ACTIONS", "HOST_TRIPLE", "TARGET_TRIPLE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_no_command_gives_none():
    assert parse_args([]) is None


def test_defaults():
    options = parse_args(["build"])
    assert options == Options(Action.BUILD)
    assert options.channel == "release"
    assert options.sysroot_kind is SysrootKind.CLIF
    assert options.use_unstable_features is True
    assert options.out_dir == Path(".")


@pytest.mark.parametrize(
    "command, action",
    [
        ("prepare", Action.PREPARE),
        ("build", Action.BUILD),
        ("test", Action.TEST),
        ("abi-cafe", Action.ABI_CAFE),
        ("bench", Action.BENCH),
    ],
)
def test_commands(command, action):
    assert parse_args([command]).action is action


def test_all_flags():
    options = parse_args(
        [
            "test",
            "--out-dir", "out",
            "--download-dir", "dl",
            "--debug",
            "--sysroot", "llvm",
            "--no-unstable-features",
            "--frozen",
            "--skip-test", "aot.mod_bench",
            "--skip-test", "testsuite.base_sysroot",
            "--use-backend", "llvm",
        ]
    )
    assert options.out_dir == Path("out")
    assert options.download_dir == Path("dl")
    assert options.channel == "debug"
    assert options.sysroot_kind is SysrootKind.LLVM
    assert options.use_unstable_features is False
    assert options.frozen is True
    assert options.skip_tests == ["aot.mod_bench", "testsuite.base_sysroot"]
    assert options.use_backend == "llvm"


@pytest.mark.parametrize("kind, expected", [("none", SysrootKind.NONE), ("clif", SysrootKind.CLIF)])
def test_sysroot_kinds(kind, expected):
    assert parse_args(["build", "--sysroot", kind]).sysroot_kind is expected


@pytest.mark.parametrize(
    "argv, message",
    [
        (["--debug"], "Expected command found flag --debug"),
        (["foo"], "Unknown command foo"),
        (["build", "--out-dir"], "--out-dir requires argument"),
        (["build", "--download-dir"], "--download-dir requires argument"),
        (["build", "--sysroot"], "--sysroot requires argument"),
        (["build", "--sysroot", "gcc"], "Unknown sysroot kind gcc"),
        (["build", "--skip-test"], "--skip-test requires argument"),
        (["build", "--use-backend"], "--use-backend requires argument"),
        (["build", "--bogus"], "Unknown flag --bogus"),
        (["build", "extra"], "Unexpected argument extra"),
    ],
)
def test_usage_errors(argv, message):
    with pytest.raises(UsageError) as info:
        parse_args(argv)
    assert str(info.value) == message


def test_main_without_command_succeeds(clean_env, capsys):
    assert main([]) == 0
    assert "Usage" in capsys.readouterr().err


def test_main_unknown_command_fails(clean_env, capsys):
    assert main(["foo"]) == 1
    assert "Unknown command foo" in capsys.readouterr().err


def test_main_sets_environment(clean_env):
    clean_env.delenv("RUST_BACKTRACE")
    assert main([]) == 0
    assert os.environ["RUST_BACKTRACE"] == "1"
    assert os.environ["CG_CLIF_DISABLE_INCR_CACHE"] == "1"


def test_main_rejects_partial_toolchain_env(clean_env, capsys):
    clean_env.delenv("RUSTC")
    clean_env.delenv("RUSTDOC")
    assert main(["build"]) == 1
    assert "All of CARGO, RUSTC and RUSTDOC" in capsys.readouterr().err


def test_main_abi_cafe_rejects_cross(clean_env, tmp_path, capsys):
    clean_env.setenv("HOST_TRIPLE", "x86_64-unknown-linux-gnu")
    clean_env.setenv("TARGET_TRIPLE", "aarch64-unknown-linux-gnu")
    assert main(["abi-cafe", "--use-backend", "llvm", "--out-dir", "out"]) == 1
    assert "Abi-cafe doesn't support cross-compilation" in capsys.readouterr().err
    marker = tmp_path / "out" / "build" / "target_dir_should_be_set_explicitly"
    assert marker.is_file()