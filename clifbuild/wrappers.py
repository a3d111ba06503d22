"""Compiler and cargo wrappers that route compilation through the codegen backend."""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

from clifbuild.rustflags import rustflags_from_env, rustflags_to_env

_BACKEND_NAME = "rustc_codegen_cranelift"
_BASE_FLAGS = ("-Cpanic=abort", "-Zpanic-abort-tests")
_JIT_MODES = {"jit": "jit", "lazy-jit": "jit-lazy"}


def find_sysroot(exe: str | os.PathLike[str]) -> Path:
    """Return the sysroot a wrapper executable belongs to."""
    sysroot = Path(exe).parent
    if sysroot.name == "bin":
        sysroot = sysroot.parent
    return sysroot


def codegen_backend_dylib(sysroot: str | os.PathLike[str]) -> Path:
    """Return where the backend dylib sits within ``sysroot``."""
    if os.name == "nt":
        # Windows has no rpath, so the dylib sits next to the binaries.
        return Path(sysroot) / "bin" / f"{_BACKEND_NAME}.dll"
    suffix = ".dylib" if sys.platform == "darwin" else ".so"
    return Path(sysroot) / "lib" / f"lib{_BACKEND_NAME}{suffix}"


def _backend_flag(sysroot: Path, builtin_backend: str | None) -> str:
    if builtin_backend is not None:
        return f"-Zcodegen-backend={builtin_backend}"
    return f"-Zcodegen-backend={codegen_backend_dylib(sysroot)}"


def compiler_args(
    passed_args: Sequence[str],
    sysroot: str | os.PathLike[str],
    builtin_backend: str | None = None,
) -> list[str]:
    """Return the rustc/rustdoc arguments: backend flags, sysroot, then ``passed_args``."""
    sysroot = Path(sysroot)
    args = [*_BASE_FLAGS, _backend_flag(sysroot, builtin_backend)]
    if not any(arg == "--sysroot" or arg.startswith("--sysroot=") for arg in passed_args):
        args += ["--sysroot", str(sysroot)]
    args += passed_args
    return args


def cargo_invocation(
    args: Sequence[str],
    sysroot: str | os.PathLike[str],
    builtin_backend: str | None = None,
) -> tuple[list[str], list[str]]:
    """Return the cargo arguments and the flags to add to RUSTFLAGS and RUSTDOCFLAGS."""
    sysroot = Path(sysroot)
    rustflags = [*_BASE_FLAGS, _backend_flag(sysroot, builtin_backend), "--sysroot", str(sysroot)]

    cargo_args = list(args)
    if cargo_args[:1] == ["clif"]:
        # Invoked as the cargo subcommand `cargo clif`.
        cargo_args.pop(0)

    mode = _JIT_MODES.get(cargo_args[0]) if cargo_args else None
    if mode is not None:
        rustflags.append("-Cprefer-dynamic")
        cargo_args = [
            "rustc",
            *cargo_args[1:],
            "--",
            "-Zunstable-options",
            f"-Cllvm-args=mode={mode}",
        ]
    return cargo_args, rustflags


def _toolchain_env(environ: Mapping[str, str]) -> dict[str, str]:
    toolchain = environ.get("TOOLCHAIN_NAME")
    if toolchain is None:
        raise RuntimeError("TOOLCHAIN_NAME")
    return {"RUSTUP_TOOLCHAIN": toolchain}


def _tool(var: str, default: str, environ: Mapping[str, str]) -> tuple[str, dict[str, str]]:
    configured = environ.get(var)
    if configured is not None:
        return configured, {}
    # Make sure the right toolchain is used.
    return default, _toolchain_env(environ)


def _exe() -> Path:
    return Path(sys.argv[0]).resolve()


def _spawn(program: str, args: list[str], extra_env: Mapping[str, str]) -> int:
    env = {**os.environ, **extra_env}
    try:
        return subprocess.run([program, *args], env=env).returncode
    except OSError as err:
        print(f"Failed to spawn {program}: {err}", file=sys.stderr)
        return 1


def _compiler_main(var: str, tool: str, argv: Sequence[str] | None) -> int:
    passed = sys.argv[1:] if argv is None else list(argv)
    sysroot = find_sysroot(_exe())
    args = compiler_args(passed, sysroot, os.environ.get("BUILTIN_BACKEND"))
    try:
        program, extra_env = _tool(var, tool, os.environ)
    except RuntimeError as err:
        print(f"Missing environment variable {err}", file=sys.stderr)
        return 1
    return _spawn(program, args, extra_env)


def cargo_clif_main(argv: Sequence[str] | None = None) -> int:
    """Run cargo with the backend and sysroot added to the compiler flags."""
    passed = sys.argv[1:] if argv is None else list(argv)
    sysroot = find_sysroot(_exe())
    cargo_args, rustflags = cargo_invocation(passed, sysroot, os.environ.get("BUILTIN_BACKEND"))
    try:
        program, extra_env = _tool("CARGO", "cargo", os.environ)
    except RuntimeError as err:
        print(f"Missing environment variable {err}", file=sys.stderr)
        return 1
    for kind in ("RUSTFLAGS", "RUSTDOCFLAGS"):
        extra_env.update(rustflags_to_env(kind, [*rustflags_from_env(kind), *rustflags]))
    return _spawn(program, cargo_args, extra_env)


def rustc_clif_main(argv: Sequence[str] | None = None) -> int:
    """Run rustc with the backend and sysroot added."""
    return _compiler_main("RUSTC", "rustc", argv)


def rustdoc_clif_main(argv: Sequence[str] | None = None) -> int:
    """Run rustdoc with the backend and sysroot added."""
    return _compiler_main("RUSTDOC", "rustdoc", argv)