"""Running the abi-cafe ABI compatibility checker against the backend."""

from __future__ import annotations

import sys

from clifbuild.build_sysroot import build_sysroot
from clifbuild.path import Dirs
from clifbuild.prepare import GitRepo
from clifbuild.utils import CargoProject, CodegenBackend, Command, Compiler, SysrootKind, spawn_and_wait

ABI_CAFE_REPO = GitRepo(
    "Gankra",
    "abi-cafe",
    "4c6dc8c9c687e2b3a760ff2176ce236872b37212",
    "588df6d66abbe105",
    "abi-cafe",
)

ABI_CAFE = CargoProject(ABI_CAFE_REPO.source_dir(), "abi_cafe_target")

PAIRS = ("rustc_calls_cgclif", "cgclif_calls_rustc", "cgclif_calls_cc", "cc_calls_cgclif")


def _abi_cafe_command(dirs: Dirs, cg_clif_dylib: CodegenBackend, compiler: Compiler) -> Command:
    cmd = ABI_CAFE.run(compiler, dirs)
    backend = str(cg_clif_dylib.local) if cg_clif_dylib.local is not None else cg_clif_dylib.builtin
    cmd.args += ["--", "--pairs", *PAIRS, "--add-rustc-codegen-backend", f"cgclif:{backend}"]
    cmd.cwd = ABI_CAFE.source_dir(dirs)
    return cmd


def run(
    channel: str,
    sysroot_kind: SysrootKind,
    dirs: Dirs,
    cg_clif_dylib: CodegenBackend,
    rustup_toolchain_name: str | None,
    bootstrap_host_compiler: Compiler,
) -> None:
    """Fetch abi-cafe, build a host sysroot and run the ABI checks."""
    ABI_CAFE_REPO.fetch(dirs)
    ABI_CAFE_REPO.patch(dirs)

    print("Building sysroot for abi-cafe", file=sys.stderr)
    build_sysroot(
        dirs,
        channel,
        sysroot_kind,
        cg_clif_dylib,
        bootstrap_host_compiler,
        rustup_toolchain_name,
        bootstrap_host_compiler.triple,
    )

    print("Running abi-cafe", file=sys.stderr)
    spawn_and_wait(_abi_cafe_command(dirs, cg_clif_dylib, bootstrap_host_compiler))