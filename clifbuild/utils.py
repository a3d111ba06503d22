"""Commands, compilers and cargo projects used throughout the build."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import sys
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from clifbuild.path import Dirs, RelPath
from clifbuild.rustflags import rustflags_to_env


class CommandFailed(Exception):
    """A command exited unsuccessfully."""

    def __init__(self, cmd: Command, returncode: int | None, message: str | None = None):
        self.cmd = cmd
        self.returncode = returncode
        super().__init__(message or f"{cmd} exited with status {returncode}")


@dataclass
class Command:
    """A program invocation; an ``env`` value of ``None`` removes the variable."""

    program: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str | None] = field(default_factory=dict)
    cwd: Path | None = None

    def _argv(self) -> list[str]:
        return [os.fspath(self.program), *(os.fspath(arg) for arg in self.args)]

    def _environment(self) -> dict[str, str] | None:
        if not self.env:
            return None
        environment = dict(os.environ)
        for key, value in self.env.items():
            if value is None:
                environment.pop(key, None)
            else:
                environment[key] = value
        return environment

    def run(self) -> int:
        """Run the command to completion and return its exit status."""
        return subprocess.run(self._argv(), env=self._environment(), cwd=self.cwd).returncode

    def __str__(self) -> str:
        return shlex.join(self._argv())


class SysrootKind(Enum):
    NONE = "none"
    CLIF = "clif"
    LLVM = "llvm"


@dataclass(frozen=True)
class CodegenBackend:
    """Either a locally built backend dylib or the name of a builtin backend."""

    local: Path | None = None
    builtin: str | None = None

    def __post_init__(self) -> None:
        if (self.local is None) == (self.builtin is None):
            raise ValueError("exactly one of local and builtin must be given")


_CROSS_TARGETS: dict[str, tuple[str | None, list[str]]] = {
    "aarch64-unknown-linux-gnu": (
        "-Clinker=aarch64-linux-gnu-gcc",
        ["qemu-aarch64", "-L", "/usr/aarch64-linux-gnu"],
    ),
    "s390x-unknown-linux-gnu": (
        "-Clinker=s390x-linux-gnu-gcc",
        ["qemu-s390x", "-L", "/usr/s390x-linux-gnu"],
    ),
    "riscv64gc-unknown-linux-gnu": (
        "-Clinker=riscv64-linux-gnu-gcc",
        ["qemu-riscv64", "-L", "/usr/riscv64-linux-gnu"],
    ),
    "x86_64-pc-windows-gnu": (None, ["wine"]),
}


@dataclass
class Compiler:
    cargo: Path
    rustc: Path
    rustdoc: Path
    rustflags: list[str] = field(default_factory=list)
    rustdocflags: list[str] = field(default_factory=list)
    triple: str = ""
    runner: list[str] = field(default_factory=list)

    def set_cross_linker_and_runner(self) -> None:
        """Configure linker flags and an emulator for known cross targets."""
        known = _CROSS_TARGETS.get(self.triple)
        if known is None:
            print("Unknown non-native platform", file=sys.stderr)
            return
        linker_flag, runner = known
        if linker_flag is not None:
            self.rustflags.append(linker_flag)
            self.rustdocflags.append(linker_flag)
        self.runner = list(runner)


@dataclass(frozen=True)
class CargoProject:
    source: RelPath
    target: str

    def source_dir(self, dirs: Dirs) -> Path:
        return self.source.to_path(dirs)

    def manifest_path(self, dirs: Dirs) -> Path:
        return self.source_dir(dirs) / "Cargo.toml"

    def target_dir(self, dirs: Dirs) -> Path:
        return RelPath.BUILD.join(self.target).to_path(dirs)

    def _base_cmd(self, command: str, cargo: Path, dirs: Dirs) -> Command:
        args = [
            command,
            "--manifest-path",
            str(self.manifest_path(dirs)),
            "--target-dir",
            str(self.target_dir(dirs)),
            "--locked",
        ]
        if dirs.frozen:
            args.append("--frozen")
        return Command(str(cargo), args)

    def _build_cmd(self, command: str, compiler: Compiler, dirs: Dirs) -> Command:
        cmd = self._base_cmd(command, compiler.cargo, dirs)
        cmd.args += ["--target", compiler.triple]
        cmd.env["RUSTC"] = str(compiler.rustc)
        cmd.env["RUSTDOC"] = str(compiler.rustdoc)
        cmd.env.update(rustflags_to_env("RUSTFLAGS", compiler.rustflags))
        cmd.env.update(rustflags_to_env("RUSTDOCFLAGS", compiler.rustdocflags))
        if compiler.runner:
            key = f"CARGO_TARGET_{compiler.triple.upper().replace('-', '_')}_RUNNER"
            cmd.env[key] = " ".join(compiler.runner)
        return cmd

    def clean(self, dirs: Dirs) -> None:
        shutil.rmtree(self.target_dir(dirs), ignore_errors=True)

    def build(self, compiler: Compiler, dirs: Dirs) -> Command:
        return self._build_cmd("build", compiler, dirs)

    def test(self, compiler: Compiler, dirs: Dirs) -> Command:
        return self._build_cmd("test", compiler, dirs)

    def run(self, compiler: Compiler, dirs: Dirs) -> Command:
        return self._build_cmd("run", compiler, dirs)


def hyperfine_command(
    warmup: int,
    runs: int,
    prepare: str | None,
    cmds: Iterable[tuple[str, str]],
    markdown_export: Path,
) -> Command:
    """Build a hyperfine benchmark command; empty names are left unnamed."""
    args = ["--export-markdown", str(markdown_export)]
    if warmup:
        args += ["--warmup", str(warmup)]
    if runs:
        args += ["--runs", str(runs)]
    if prepare is not None:
        args += ["--prepare", prepare]
    for name, cmd in cmds:
        if name:
            args += ["-n", name]
        args.append(cmd)
    return Command("hyperfine", args)


def git_command(repo_dir: Path | None, cmd: str) -> Command:
    """Build a git command with a fixed identity and no signing."""
    args = [
        "-c", "user.name=Dummy",
        "-c", "user.email=dummy@example.com",
        "-c", "core.autocrlf=false",
        "-c", "commit.gpgSign=false",
        cmd,
    ]
    return Command("git", args, cwd=Path(repo_dir) if repo_dir is not None else None)


def spawn_and_wait(cmd: Command) -> None:
    """Run ``cmd`` and raise :class:`CommandFailed` if it does not succeed."""
    returncode = cmd.run()
    if returncode != 0:
        raise CommandFailed(cmd, returncode)


def retry_spawn_and_wait(
    tries: int, cmd: Command, sleep: Callable[[float], None] = time.sleep
) -> None:
    """Run ``cmd`` up to ``tries`` times, waiting longer after each failure."""
    for attempt in range(1, tries + 1):
        if attempt != 1:
            print(f"Command failed. Attempt {attempt}/{tries}:", file=sys.stderr)
        if cmd.run() == 0:
            return
        sleep(attempt * 5)
    raise CommandFailed(cmd, None, f"The command has failed after {tries} attempts.")


def is_ci() -> bool:
    return "CI" in os.environ


def is_ci_opt() -> bool:
    return "CI_OPT" in os.environ


class LogGroup:
    """Groups log output on GitHub Actions; groups cannot be nested."""

    _active = False

    def __init__(self, name: str):
        self.name = name
        self.is_gha = False

    def __enter__(self) -> LogGroup:
        if LogGroup._active:
            raise RuntimeError("log groups cannot be nested")
        LogGroup._active = True
        self.is_gha = "GITHUB_ACTIONS" in os.environ
        if self.is_gha:
            print(f"::group::{self.name}", file=sys.stderr)
        return self

    def __exit__(self, *args: object) -> None:
        if self.is_gha:
            print("::endgroup::", file=sys.stderr)
        LogGroup._active = False


def maybe_incremental(cmd: Command) -> None:
    """Enable incremental compilation unless on CI or explicitly disabled."""
    if is_ci() or os.environ.get("CARGO_BUILD_INCREMENTAL") == "false":
        cmd.env["CARGO_BUILD_INCREMENTAL"] = "false"
    else:
        cmd.env["CARGO_BUILD_INCREMENTAL"] = "true"