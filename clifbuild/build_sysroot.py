"""Assembling a sysroot: backend, compiler wrappers and standard library."""

from __future__ import annotations

import copy
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from clifbuild import config
from clifbuild.fsutil import remove_dir_if_exists, try_hard_link
from clifbuild.path import Dirs, RelPath
from clifbuild.prepare import STDLIB_SRC, prepare_stdlib
from clifbuild.rustc_info import get_default_sysroot, get_file_name
from clifbuild.utils import (
    CargoProject,
    CodegenBackend,
    Command,
    Compiler,
    LogGroup,
    SysrootKind,
    maybe_incremental,
    spawn_and_wait,
)

DIST_DIR = RelPath.DIST
BIN_DIR = RelPath.DIST.join("bin")
LIB_DIR = RelPath.DIST.join("lib")

STANDARD_LIBRARY = CargoProject(STDLIB_SRC.join("library/sysroot"), "stdlib_target")
RTSTARTUP_SYSROOT = RelPath.BUILD.join("rtstartup")

WRAPPERS = ("rustc-clif", "rustdoc-clif", "cargo-clif")
_WRAPPER_PLACEHOLDER = "____"
_SKIPPED_DEP_SUFFIXES = frozenset({".rmeta", ".d", ".dSYM", ".clif"})


@dataclass
class SysrootTarget:
    """The libraries built for one target triple."""

    triple: str
    libs: list[Path] = field(default_factory=list)

    def install_into_sysroot(self, sysroot: str | os.PathLike[str]) -> None:
        """Link the libraries into ``<sysroot>/lib/rustlib/<triple>/lib``."""
        if not self.libs:
            return
        target_rustlib_lib = Path(sysroot) / "lib" / "rustlib" / self.triple / "lib"
        target_rustlib_lib.mkdir(parents=True, exist_ok=True)
        for lib in self.libs:
            try_hard_link(lib, target_rustlib_lib / Path(lib).name)


def is_rustc_dev_lib(file_name: str) -> bool:
    """Whether a library belongs to the rustc-dev component and is not needed by programs."""
    return (
        (
            "rustc_" in file_name
            and "rustc_std_workspace_" not in file_name
            and "rustc_demangle" not in file_name
        )
        or "chalk" in file_name
        or "tracing" in file_name
        or "regex" in file_name
    )


def _backend_flag(backend: CodegenBackend) -> str:
    name = str(backend.local) if backend.local is not None else backend.builtin
    return f"-Zcodegen-backend={name}"


def _wrapper_command(
    compiler: Compiler,
    script: Path,
    output: Path,
    rustup_toolchain_name: str | None,
    backend: CodegenBackend,
) -> Command:
    cmd = Command(str(compiler.rustc), [str(script), "-o", str(output), "-Cstrip=debuginfo"])
    if rustup_toolchain_name is not None:
        cmd.env.update(
            {"TOOLCHAIN_NAME": rustup_toolchain_name, "CARGO": None, "RUSTC": None, "RUSTDOC": None}
        )
    else:
        cmd.env.update(
            {
                "TOOLCHAIN_NAME": None,
                "CARGO": str(compiler.cargo),
                "RUSTC": str(compiler.rustc),
                "RUSTDOC": str(compiler.rustdoc),
            }
        )
    if backend.builtin is not None:
        cmd.env["BUILTIN_BACKEND"] = backend.builtin
    return cmd


def build_sysroot(
    dirs: Dirs,
    channel: str,
    sysroot_kind: SysrootKind,
    cg_clif_dylib_src: CodegenBackend,
    bootstrap_host_compiler: Compiler,
    rustup_toolchain_name: str | None,
    target_triple: str,
) -> Compiler:
    """Build the sysroot into the dist dir and return a compiler that uses it."""
    with LogGroup("Build sysroot"):
        print(f"[BUILD] sysroot {sysroot_kind.name.capitalize()}", file=sys.stderr)

        DIST_DIR.ensure_fresh(dirs)
        BIN_DIR.ensure_exists(dirs)
        LIB_DIR.ensure_exists(dirs)

        is_native = bootstrap_host_compiler.triple == target_triple

        if cg_clif_dylib_src.local is not None:
            # Windows has no rpath, so the dylib must sit next to the binaries.
            dylib_dir = BIN_DIR if os.name == "nt" else LIB_DIR
            dylib_path = dylib_dir.to_path(dirs) / cg_clif_dylib_src.local.name
            try_hard_link(cg_clif_dylib_src.local, dylib_path)
            cg_clif_dylib_path = CodegenBackend(local=dylib_path)
        else:
            cg_clif_dylib_path = cg_clif_dylib_src

        wrapper_base_name = get_file_name(bootstrap_host_compiler.rustc, _WRAPPER_PLACEHOLDER, "bin")
        dist = DIST_DIR.to_path(dirs)
        for wrapper in WRAPPERS:
            wrapper_name = wrapper_base_name.replace(_WRAPPER_PLACEHOLDER, wrapper)
            wrapper_path = dist / wrapper_name
            spawn_and_wait(
                _wrapper_command(
                    bootstrap_host_compiler,
                    RelPath.SCRIPTS.to_path(dirs) / f"{wrapper}.rs",
                    wrapper_path,
                    rustup_toolchain_name,
                    cg_clif_dylib_src,
                )
            )
            try_hard_link(wrapper_path, BIN_DIR.to_path(dirs) / wrapper_name)

        host = _build_sysroot_for_triple(
            dirs, channel, copy.deepcopy(bootstrap_host_compiler), cg_clif_dylib_path, sysroot_kind
        )
        host.install_into_sysroot(dist)

        if not is_native:
            target_bootstrap = copy.deepcopy(bootstrap_host_compiler)
            target_bootstrap.triple = target_triple
            target_bootstrap.set_cross_linker_and_runner()
            _build_sysroot_for_triple(
                dirs, channel, target_bootstrap, cg_clif_dylib_path, sysroot_kind
            ).install_into_sysroot(dist)

        # The jit mode needs the host std next to the backend to find it.
        for lib in host.libs:
            name = lib.name
            if "std-" in name and ".rlib" not in name:
                try_hard_link(lib, LIB_DIR.to_path(dirs) / name)

        target_compiler = Compiler(
            cargo=bootstrap_host_compiler.cargo,
            rustc=dist / wrapper_base_name.replace(_WRAPPER_PLACEHOLDER, "rustc-clif"),
            rustdoc=dist / wrapper_base_name.replace(_WRAPPER_PLACEHOLDER, "rustdoc-clif"),
            triple=target_triple,
        )
        if not is_native:
            target_compiler.set_cross_linker_and_runner()
        return target_compiler


def _build_sysroot_for_triple(
    dirs: Dirs,
    channel: str,
    compiler: Compiler,
    cg_clif_dylib_path: CodegenBackend,
    sysroot_kind: SysrootKind,
) -> SysrootTarget:
    if sysroot_kind is SysrootKind.NONE:
        return _build_rtstartup(dirs, compiler) or SysrootTarget(compiler.triple)
    if sysroot_kind is SysrootKind.LLVM:
        return _build_llvm_sysroot_for_triple(compiler)
    return _build_clif_sysroot_for_triple(dirs, channel, compiler, cg_clif_dylib_path)


def _collect_llvm_libs(lib_dir: Path, triple: str) -> SysrootTarget:
    target = SysrootTarget(triple)
    for entry in sorted(Path(lib_dir).iterdir()):
        if entry.is_dir() or is_rustc_dev_lib(entry.name):
            continue
        target.libs.append(entry)
    return target


def _build_llvm_sysroot_for_triple(compiler: Compiler) -> SysrootTarget:
    default_sysroot = get_default_sysroot(compiler.rustc)
    lib_dir = default_sysroot / "lib" / "rustlib" / compiler.triple / "lib"
    return _collect_llvm_libs(lib_dir, compiler.triple)


def _clif_sysroot_rustflags(
    dirs: Dirs, channel: str, backend: CodegenBackend, remap_prefix: str | None
) -> list[str]:
    flags = ["-Zforce-unstable-if-unmarked", "-Cpanic=abort", _backend_flag(backend)]
    # MinGW needs this to find rsbegin.o and rsend.o.
    flags += ["--sysroot", str(RTSTARTUP_SYSROOT.to_path(dirs))]
    if channel == "release":
        # Incremental compilation disables mir inlining by default; force it on.
        flags.append("-Zinline-mir")
    if remap_prefix is not None:
        flags += ["--remap-path-prefix", f"{STDLIB_SRC.to_path(dirs)}={remap_prefix}"]
    return flags


def _is_sysroot_artifact(path: Path) -> bool:
    suffix = Path(path).suffix
    return bool(suffix) and suffix not in _SKIPPED_DEP_SUFFIXES


def _build_clif_sysroot_for_triple(
    dirs: Dirs, channel: str, compiler: Compiler, cg_clif_dylib_path: CodegenBackend
) -> SysrootTarget:
    target_libs = SysrootTarget(compiler.triple)

    rtstartup = _build_rtstartup(dirs, compiler)
    if rtstartup is not None:
        rtstartup.install_into_sysroot(RTSTARTUP_SYSROOT.to_path(dirs))
        target_libs.libs.extend(rtstartup.libs)

    build_dir = STANDARD_LIBRARY.target_dir(dirs) / compiler.triple / channel

    if not config.get_bool("keep_sysroot"):
        # Build scripts and the incremental cache are unaffected by backend changes.
        remove_dir_if_exists(build_dir / "deps")

    compiler.rustflags.extend(
        _clif_sysroot_rustflags(
            dirs, channel, cg_clif_dylib_path, os.environ.get("CG_CLIF_STDLIB_REMAP_PATH_PREFIX")
        )
    )
    build_cmd = STANDARD_LIBRARY.build(compiler, dirs)
    maybe_incremental(build_cmd)
    if channel == "release":
        build_cmd.args.append("--release")
    build_cmd.args += ["--features", "compiler-builtins-no-asm backtrace panic-unwind"]
    build_cmd.env["CARGO_PROFILE_RELEASE_DEBUG"] = "true"
    build_cmd.env["__CARGO_DEFAULT_LIB_METADATA"] = "cg_clif"
    if "apple" in compiler.triple:
        build_cmd.env["CARGO_PROFILE_RELEASE_SPLIT_DEBUGINFO"] = "packed"
    spawn_and_wait(build_cmd)

    target_libs.libs.extend(
        entry for entry in sorted((build_dir / "deps").iterdir()) if _is_sysroot_artifact(entry)
    )
    return target_libs


def _build_rtstartup(dirs: Dirs, compiler: Compiler) -> SysrootTarget | None:
    if not config.get_bool("keep_sysroot"):
        prepare_stdlib(dirs, compiler.rustc)

    if not compiler.triple.endswith("windows-gnu"):
        return None

    RTSTARTUP_SYSROOT.ensure_fresh(dirs)

    rtstartup_src = STDLIB_SRC.to_path(dirs) / "library" / "rtstartup"
    target_libs = SysrootTarget(compiler.triple)

    for file in ("rsbegin", "rsend"):
        obj = RTSTARTUP_SYSROOT.to_path(dirs) / f"{file}.o"
        spawn_and_wait(
            Command(
                str(compiler.rustc),
                [
                    "-Ainternal_features",
                    "--target", compiler.triple,
                    "--emit=obj",
                    "-o", str(obj),
                    str(rtstartup_src / f"{file}.rs"),
                ],
            )
        )
        target_libs.libs.append(obj)

    return target_libs