"""Querying the installed toolchain for paths, triples and file names."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path


def _output(*argv: str | os.PathLike[str]) -> str:
    return subprocess.run(
        [os.fspath(arg) for arg in argv], stdout=subprocess.PIPE, text=True
    ).stdout


def get_host_triple(rustc: Path) -> str:
    """Return the host triple reported by ``rustc -vV``."""
    for line in _output(rustc, "-vV").splitlines():
        if line.startswith("host"):
            return line.split(":")[1].strip()
    raise RuntimeError(f"{rustc} -vV did not report a host triple")


def get_toolchain_name() -> str:
    """Return the name of the active rustup toolchain."""
    output = _output("rustup", "show", "active-toolchain").strip()
    name, sep, _ = output.partition(" ")
    if not sep:
        raise RuntimeError(f"Unexpected output from rustup: {output!r}")
    return name


def _tool_path(env_var: str, tool: str) -> Path:
    configured = os.environ.get(env_var)
    if configured is not None:
        return Path(configured)
    return Path(_output("rustup", "which", tool).strip())


def get_cargo_path() -> Path:
    return _tool_path("CARGO", "cargo")


def get_rustc_path() -> Path:
    return _tool_path("RUSTC", "rustc")


def get_rustdoc_path() -> Path:
    return _tool_path("RUSTDOC", "rustdoc")


def get_default_sysroot(rustc: Path) -> Path:
    return Path(_output(rustc, "--print", "sysroot").strip())


def get_file_name(rustc: Path, crate_name: str, crate_type: str) -> str:
    """Return the output file name rustc uses for a crate of the given type."""
    file_name = _output(
        rustc,
        "--crate-name", crate_name,
        "--crate-type", crate_type,
        "--print", "file-names",
        "-",
    ).strip()
    if "\n" in file_name:
        raise RuntimeError(f"Expected a single file name, got {file_name!r}")
    if crate_name not in file_name:
        raise RuntimeError(f"File name {file_name!r} does not contain {crate_name!r}")
    return file_name