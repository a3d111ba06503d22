"""Benchmarking compile and run time of a sample project with hyperfine."""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Mapping
from pathlib import Path

from clifbuild.path import Dirs, RelPath
from clifbuild.prepare import GitRepo
from clifbuild.rustc_info import get_file_name
from clifbuild.utils import Compiler, hyperfine_command, spawn_and_wait

SIMPLE_RAYTRACER_REPO = GitRepo(
    "ebobby",
    "simple-raytracer",
    "804a7a21b9e673a482797aa289a18ed480e4d813",
    "ad6f59a2331a3f56",
    "<none>",
)


def _bench_runs(environ: Mapping[str, str]) -> int:
    return int(environ.get("BENCH_RUNS", "10"))


def _compile_commands(
    cargo_clif: Path, manifest_path: Path, target_dir: Path
) -> tuple[str, list[tuple[str, str]]]:
    """Return the clean command and the named build commands to compare."""
    common = f"--manifest-path {manifest_path} --target-dir {target_dir}"
    clean_cmd = f"RUSTC=rustc cargo clean {common}"
    llvm_build_cmd = (
        f"RUSTC=rustc cargo build {common} && (rm build/raytracer_cg_llvm || true) "
        "&& ln build/simple_raytracer/debug/main build/raytracer_cg_llvm"
    )
    clif_build_cmd = (
        f"RUSTC=rustc {cargo_clif} build {common} && (rm build/raytracer_cg_clif || true) "
        "&& ln build/simple_raytracer/debug/main build/raytracer_cg_clif"
    )
    clif_build_opt_cmd = (
        f"RUSTC=rustc {cargo_clif} build {common} --release "
        "&& (rm build/raytracer_cg_clif_opt || true) "
        "&& ln build/simple_raytracer/release/main build/raytracer_cg_clif_opt"
    )
    return clean_cmd, [
        ("cargo build", llvm_build_cmd),
        ("cargo-clif build", clif_build_cmd),
        ("cargo-clif build --release", clif_build_opt_cmd),
    ]


def _append_summary(summary: Path, title: str, markdown: Path) -> None:
    with open(summary, "ab") as out:
        out.write(f"## {title}\n\n".encode())
        out.write(Path(markdown).read_bytes())
        out.write(b"\n")


def benchmark(dirs: Dirs, bootstrap_host_compiler: Compiler) -> None:
    """Run all benchmarks."""
    _benchmark_simple_raytracer(dirs, bootstrap_host_compiler)


def _benchmark_simple_raytracer(dirs: Dirs, bootstrap_host_compiler: Compiler) -> None:
    if shutil.which("hyperfine") is None:
        raise RuntimeError(
            "Hyperfine not installed\n"
            "Hint: Try `cargo install hyperfine` to install hyperfine"
        )

    SIMPLE_RAYTRACER_REPO.fetch(dirs)
    SIMPLE_RAYTRACER_REPO.patch(dirs)

    bench_runs = _bench_runs(os.environ)
    summary_env = os.environ.get("GITHUB_STEP_SUMMARY")
    gha_step_summary = Path(summary_env) if summary_env is not None else None
    if gha_step_summary is not None and not gha_step_summary.exists():
        raise FileNotFoundError(f"Step summary file {gha_step_summary} does not exist")

    rustc = bootstrap_host_compiler.rustc
    dist = RelPath.DIST.to_path(dirs)

    print("[BENCH COMPILE] ebobby/simple-raytracer", file=sys.stderr)
    cargo_clif = dist / get_file_name(rustc, "cargo_clif", "bin").replace("_", "-")
    manifest_path = SIMPLE_RAYTRACER_REPO.source_dir().to_path(dirs) / "Cargo.toml"
    target_dir = RelPath.BUILD.join("simple_raytracer").to_path(dirs)

    clean_cmd, build_cmds = _compile_commands(cargo_clif, manifest_path, target_dir)
    bench_compile_markdown = dist / "bench_compile.md"
    spawn_and_wait(hyperfine_command(1, bench_runs, clean_cmd, build_cmds, bench_compile_markdown))

    if gha_step_summary is not None:
        _append_summary(gha_step_summary, "Compile ebobby/simple-raytracer", bench_compile_markdown)

    print("[BENCH RUN] ebobby/simple-raytracer", file=sys.stderr)

    bench_run_markdown = dist / "bench_run.md"
    run_cmds = [
        ("", os.path.join(".", get_file_name(rustc, name, "bin")))
        for name in ("raytracer_cg_llvm", "raytracer_cg_clif", "raytracer_cg_clif_opt")
    ]
    bench_run = hyperfine_command(0, bench_runs, None, run_cmds, bench_run_markdown)
    bench_run.cwd = RelPath.BUILD.to_path(dirs)
    spawn_and_wait(bench_run)

    if gha_step_summary is not None:
        _append_summary(gha_step_summary, "Run ebobby/simple-raytracer", bench_run_markdown)