"""Command line entry point of the build system."""

from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from clifbuild import config, rustc_info
from clifbuild.config import ConfigError
from clifbuild.path import Dirs, RelPath
from clifbuild.utils import CodegenBackend, CommandFailed, Compiler, SysrootKind, is_ci, is_ci_opt

USAGE = """\
Usage: clifbuild <command> [options]

Commands: prepare, build, test, abi-cafe, bench

Options:
    --out-dir DIR           directory for build and dist output (default: .)
    --download-dir DIR      directory for downloads (default: <out-dir>/download)
    --debug                 build in debug mode instead of release
    --sysroot KIND          none, clif or llvm (default: clif)
    --no-unstable-features  do not use unstable features
    --frozen                pass --frozen to cargo
    --skip-test NAME        skip the named test (may be repeated)
    --use-backend NAME      use a builtin codegen backend instead of building one"""


class Action(Enum):
    """The command to carry out."""

    PREPARE = "prepare"
    BUILD = "build"
    TEST = "test"
    ABI_CAFE = "abi-cafe"
    BENCH = "bench"


_SYSROOT_KINDS = {
    "none": SysrootKind.NONE,
    "clif": SysrootKind.CLIF,
    "llvm": SysrootKind.LLVM,
}


class UsageError(Exception):
    """The command line could not be understood."""


@dataclass
class Options:
    """Settings given on the command line."""

    action: Action
    out_dir: Path = Path(".")
    download_dir: Path | None = None
    channel: str = "release"
    sysroot_kind: SysrootKind = SysrootKind.CLIF
    use_unstable_features: bool = True
    frozen: bool = False
    skip_tests: list[str] = field(default_factory=list)
    use_backend: str | None = None


def parse_args(argv: Sequence[str]) -> Options | None:
    """Parse the arguments after the program name; ``None`` when no command is given."""
    args = iter(argv)
    command = next(args, None)
    if command is None:
        return None
    if command.startswith("-"):
        raise UsageError(f"Expected command found flag {command}")
    try:
        options = Options(Action(command))
    except ValueError:
        raise UsageError(f"Unknown command {command}") from None

    def value_of(flag: str) -> str:
        value = next(args, None)
        if value is None:
            raise UsageError(f"{flag} requires argument")
        return value

    for arg in args:
        if arg == "--out-dir":
            options.out_dir = Path(value_of(arg))
        elif arg == "--download-dir":
            options.download_dir = Path(value_of(arg))
        elif arg == "--debug":
            options.channel = "debug"
        elif arg == "--sysroot":
            kind = value_of(arg)
            if kind not in _SYSROOT_KINDS:
                raise UsageError(f"Unknown sysroot kind {kind}")
            options.sysroot_kind = _SYSROOT_KINDS[kind]
        elif arg == "--no-unstable-features":
            options.use_unstable_features = False
        elif arg == "--frozen":
            options.frozen = True
        elif arg == "--skip-test":
            options.skip_tests.append(value_of(arg))
        elif arg == "--use-backend":
            options.use_backend = value_of(arg)
        elif arg.startswith("-"):
            raise UsageError(f"Unknown flag {arg}")
        else:
            raise UsageError(f"Unexpected argument {arg}")
    return options


def _setup_environment() -> None:
    os.environ.setdefault("RUST_BACKTRACE", "1")
    os.environ["CG_CLIF_DISABLE_INCR_CACHE"] = "1"
    if is_ci():
        # Incremental compilation saves little on CI and bloats the cache.
        os.environ["CARGO_BUILD_INCREMENTAL"] = "false"
        if not is_ci_opt():
            os.environ["CG_CLIF_ENABLE_VERIFIER"] = "1"


def _download_dir(options: Options, current_dir: Path, out_dir: Path) -> Path:
    if options.download_dir is not None:
        return current_dir / options.download_dir
    return out_dir / "download"


def _rustup_toolchain_name() -> str | None:
    present = [name in os.environ for name in ("CARGO", "RUSTC", "RUSTDOC")]
    if all(present):
        return None
    if not any(present):
        return rustc_info.get_toolchain_name()
    raise UsageError("All of CARGO, RUSTC and RUSTDOC need to be set or none must be set")


def _bootstrap_host_compiler() -> Compiler:
    cargo = rustc_info.get_cargo_path()
    rustc = rustc_info.get_rustc_path()
    rustdoc = rustc_info.get_rustdoc_path()
    triple = (
        os.environ.get("HOST_TRIPLE")
        or config.get_value("host")
        or rustc_info.get_host_triple(rustc)
    )
    return Compiler(cargo=cargo, rustc=rustc, rustdoc=rustdoc, triple=triple)


def _run(options: Options) -> int:
    current_dir = Path.cwd()
    out_dir = current_dir / options.out_dir
    download_dir = _download_dir(options, current_dir, out_dir)

    if options.action is Action.PREPARE:
        from clifbuild.prepare import prepare

        dummy = Path("dummy_do_not_use")
        prepare(Dirs(current_dir, download_dir, dummy, dummy, options.frozen))
        return 0

    try:
        rustup_toolchain_name = _rustup_toolchain_name()
    except UsageError as err:
        print(err, file=sys.stderr)
        return 1

    host_compiler = _bootstrap_host_compiler()
    target_triple = (
        os.environ.get("TARGET_TRIPLE") or config.get_value("target") or host_compiler.triple
    )

    dirs = Dirs(
        source_dir=current_dir,
        download_dir=download_dir,
        build_dir=out_dir / "build",
        dist_dir=out_dir / "dist",
        frozen=options.frozen,
    )
    RelPath.BUILD.ensure_exists(dirs)

    # A plain file here makes any cargo run without an explicit target dir fail.
    target = RelPath.BUILD.join("target_dir_should_be_set_explicitly").to_path(dirs)
    os.environ["CARGO_TARGET_DIR"] = str(target)
    if target.is_dir():
        target.rmdir()
    target.unlink(missing_ok=True)
    target.touch()

    os.environ["RUSTC"] = "rustc_should_be_set_explicitly"
    os.environ["RUSTDOC"] = "rustdoc_should_be_set_explicitly"

    if options.action is Action.ABI_CAFE and host_compiler.triple != target_triple:
        print("Abi-cafe doesn't support cross-compilation", file=sys.stderr)
        return 1

    if options.use_backend is not None:
        cg_clif_dylib = CodegenBackend(builtin=options.use_backend)
    else:
        from clifbuild.build_backend import build_backend

        cg_clif_dylib = CodegenBackend(
            local=build_backend(
                dirs, options.channel, host_compiler, options.use_unstable_features
            )
        )

    if options.action is Action.TEST:
        from clifbuild.testsuite import run_tests

        run_tests(
            dirs,
            options.channel,
            options.sysroot_kind,
            options.use_unstable_features,
            options.skip_tests,
            cg_clif_dylib,
            host_compiler,
            rustup_toolchain_name,
            target_triple,
        )
    elif options.action is Action.ABI_CAFE:
        from clifbuild import abi_cafe

        abi_cafe.run(
            options.channel,
            options.sysroot_kind,
            dirs,
            cg_clif_dylib,
            rustup_toolchain_name,
            host_compiler,
        )
    else:
        from clifbuild.build_sysroot import build_sysroot

        build_sysroot(
            dirs,
            options.channel,
            options.sysroot_kind,
            cg_clif_dylib,
            host_compiler,
            rustup_toolchain_name,
            target_triple,
        )
        if options.action is Action.BENCH:
            from clifbuild.bench import benchmark

            benchmark(dirs, host_compiler)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the build system; returns the process exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    _setup_environment()

    try:
        options = parse_args(args)
    except UsageError as err:
        print(err, file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1
    if options is None:
        print(USAGE, file=sys.stderr)
        return 0

    try:
        return _run(options)
    except (CommandFailed, ConfigError, RuntimeError, OSError) as err:
        print(err, file=sys.stderr)
        return 1