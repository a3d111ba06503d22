"""Building the codegen backend itself."""

from __future__ import annotations

import sys
from pathlib import Path

from clifbuild.path import Dirs, RelPath
from clifbuild.rustc_info import get_file_name
from clifbuild.rustflags import rustflags_from_env, rustflags_to_env
from clifbuild.utils import (
    CargoProject,
    Compiler,
    LogGroup,
    is_ci,
    is_ci_opt,
    maybe_incremental,
    spawn_and_wait,
)

CG_CLIF = CargoProject(RelPath.SOURCE, "cg_clif")


def build_backend(
    dirs: Dirs,
    channel: str,
    bootstrap_host_compiler: Compiler,
    use_unstable_features: bool,
) -> Path:
    """Build the backend with cargo and return the path of the resulting dylib."""
    if channel not in ("debug", "release"):
        raise ValueError(f"Unknown channel {channel!r}")

    with LogGroup("Build backend"):
        cmd = CG_CLIF.build(bootstrap_host_compiler, dirs)
        maybe_incremental(cmd)

        rustflags = rustflags_from_env("RUSTFLAGS")
        rustflags.append("-Zallow-features=rustc_private")

        if is_ci():
            rustflags.append("-Dwarnings")
            if not is_ci_opt():
                cmd.env["CARGO_PROFILE_RELEASE_DEBUG_ASSERTIONS"] = "true"
                cmd.env["CARGO_PROFILE_RELEASE_OVERFLOW_CHECKS"] = "true"

        if use_unstable_features:
            cmd.args += ["--features", "unstable-features"]

        if channel == "release":
            cmd.args.append("--release")

        cmd.env.update(rustflags_to_env("RUSTFLAGS", rustflags))

        print("[BUILD] rustc_codegen_cranelift", file=sys.stderr)
        spawn_and_wait(cmd)

        return (
            CG_CLIF.target_dir(dirs)
            / bootstrap_host_compiler.triple
            / channel
            / get_file_name(bootstrap_host_compiler.rustc, "rustc_codegen_cranelift", "dylib")
        )