"""The test suites run against the backend and the runner that executes them."""

from __future__ import annotations

import copy
import os
import shutil
import sys
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from clifbuild import config
from clifbuild.build_sysroot import build_sysroot
from clifbuild.path import Dirs, RelPath
from clifbuild.prepare import PORTABLE_SIMD_REPO, RAND_REPO, REGEX_REPO, apply_patches
from clifbuild.rustc_info import get_default_sysroot
from clifbuild.rustflags import rustflags_from_env
from clifbuild.utils import (
    CargoProject,
    CodegenBackend,
    Command,
    Compiler,
    LogGroup,
    SysrootKind,
    spawn_and_wait,
)

BUILD_EXAMPLE_OUT_DIR = RelPath.BUILD.join("example")

_KINDS = frozenset({"custom", "build_lib", "build_bin", "build_bin_and_run", "jit_bin"})


@dataclass(frozen=True)
class TestCase:
    """One test, enabled by the config entry ``config`` (``<tag>.<name>``).

    ``kind`` is one of ``custom``, ``build_lib``, ``build_bin``,
    ``build_bin_and_run`` and ``jit_bin``; custom tests carry ``func``.
    """

    __test__ = False

    config: str
    kind: str
    source: str = ""
    crate_types: str = ""
    args: tuple[str, ...] = ()
    func: Callable[[TestRunner], None] | None = None

    def __post_init__(self) -> None:
        if self.kind not in _KINDS:
            raise ValueError(f"Unknown test kind {self.kind!r}")
        if (self.kind == "custom") != (self.func is not None):
            raise ValueError("exactly the custom tests carry a function")
        if "." not in self.config:
            raise ValueError(f"Test config {self.config!r} has no tag")


NO_SYSROOT_SUITE = (
    TestCase("build.mini_core", "build_lib", "example/mini_core.rs", "lib,dylib"),
    TestCase("build.example", "build_lib", "example/example.rs", "lib"),
    TestCase(
        "jit.mini_core_hello_world",
        "jit_bin",
        "example/mini_core_hello_world.rs",
        args=("abc", "bcd"),
    ),
    TestCase(
        "aot.mini_core_hello_world",
        "build_bin_and_run",
        "example/mini_core_hello_world.rs",
        args=("abc", "bcd"),
    ),
)

BASE_SYSROOT_SUITE = (
    TestCase(
        "aot.arbitrary_self_types_pointers_and_wrappers",
        "build_bin_and_run",
        "example/arbitrary_self_types_pointers_and_wrappers.rs",
    ),
    TestCase(
        "aot.issue_91827_extern_types",
        "build_bin_and_run",
        "example/issue-91827-extern-types.rs",
    ),
    TestCase("build.alloc_system", "build_lib", "example/alloc_system.rs", "lib"),
    TestCase("aot.alloc_example", "build_bin_and_run", "example/alloc_example.rs"),
    TestCase("jit.std_example", "jit_bin", "example/std_example.rs"),
    TestCase("aot.std_example", "build_bin_and_run", "example/std_example.rs", args=("arg",)),
    TestCase("aot.dst_field_align", "build_bin_and_run", "example/dst-field-align.rs"),
    TestCase(
        "aot.subslice-patterns-const-eval",
        "build_bin_and_run",
        "example/subslice-patterns-const-eval.rs",
    ),
    TestCase(
        "aot.track-caller-attribute", "build_bin_and_run", "example/track-caller-attribute.rs"
    ),
    TestCase("aot.float-minmax-pass", "build_bin_and_run", "example/float-minmax-pass.rs"),
    TestCase("aot.mod_bench", "build_bin_and_run", "example/mod_bench.rs"),
    TestCase("aot.issue-72793", "build_bin_and_run", "example/issue-72793.rs"),
    TestCase("aot.issue-59326", "build_bin", "example/issue-59326.rs"),
)

RAND = CargoProject(RAND_REPO.source_dir(), "rand_target")
REGEX = CargoProject(REGEX_REPO.source_dir(), "regex_target")
PORTABLE_SIMD = CargoProject(PORTABLE_SIMD_REPO.source_dir(), "portable-simd_target")

LIBCORE_TESTS_SRC = RelPath.BUILD.join("coretests")
LIBCORE_TESTS = CargoProject(LIBCORE_TESTS_SRC, "coretests_target")


def _not_running_tests() -> None:
    print("Cross-Compiling: Not running tests", file=sys.stderr)


def _test_rand(runner: TestRunner) -> None:
    RAND_REPO.patch(runner.dirs)
    RAND.clean(runner.dirs)

    if runner.is_native:
        cmd = RAND.test(runner.target_compiler, runner.dirs)
        cmd.args += ["--workspace", "--", "-q"]
    else:
        _not_running_tests()
        cmd = RAND.build(runner.target_compiler, runner.dirs)
        cmd.args += ["--workspace", "--tests"]
    spawn_and_wait(cmd)


def _test_libcore(runner: TestRunner) -> None:
    tests_src = LIBCORE_TESTS_SRC.to_path(runner.dirs)
    apply_patches(
        runner.dirs,
        "coretests",
        Path(runner.stdlib_source) / "library" / "core" / "tests",
        tests_src,
    )
    shutil.copy(
        RelPath.PATCHES.to_path(runner.dirs) / "coretests-lock.toml", tests_src / "Cargo.lock"
    )

    LIBCORE_TESTS.clean(runner.dirs)

    if runner.is_native:
        cmd = LIBCORE_TESTS.test(runner.target_compiler, runner.dirs)
        cmd.args += ["--", "-q"]
    else:
        _not_running_tests()
        cmd = LIBCORE_TESTS.build(runner.target_compiler, runner.dirs)
        cmd.args.append("--tests")
    spawn_and_wait(cmd)


def _test_regex(runner: TestRunner) -> None:
    REGEX_REPO.patch(runner.dirs)
    REGEX.clean(runner.dirs)

    if runner.is_native:
        # regex-capi and regex-debug have no tests worth running here.
        cmd = REGEX.test(runner.target_compiler, runner.dirs)
        cmd.args += [
            "-p", "regex",
            "-p", "regex-syntax",
            "--release",
            "--all-targets",
            "--",
            "-q",
        ]
        spawn_and_wait(cmd)

        # The regex-automata integration tests are slow and add little coverage.
        cmd = REGEX.test(runner.target_compiler, runner.dirs)
        cmd.args += ["-p", "regex-automata", "--release", "--lib", "--", "-q"]
        spawn_and_wait(cmd)
    else:
        _not_running_tests()
        cmd = REGEX.build(runner.target_compiler, runner.dirs)
        cmd.args.append("--tests")
        spawn_and_wait(cmd)


def _test_portable_simd(runner: TestRunner) -> None:
    PORTABLE_SIMD_REPO.patch(runner.dirs)
    PORTABLE_SIMD.clean(runner.dirs)

    build_cmd = PORTABLE_SIMD.build(runner.target_compiler, runner.dirs)
    build_cmd.args.append("--all-targets")
    spawn_and_wait(build_cmd)

    if runner.is_native:
        test_cmd = PORTABLE_SIMD.test(runner.target_compiler, runner.dirs)
        test_cmd.args.append("-q")
        spawn_and_wait(test_cmd)


EXTENDED_SYSROOT_SUITE = (
    TestCase("test.rust-random/rand", "custom", func=_test_rand),
    TestCase("test.libcore", "custom", func=_test_libcore),
    TestCase("test.regex", "custom", func=_test_regex),
    TestCase("test.portable-simd", "custom", func=_test_portable_simd),
)


class TestRunner:
    """Runs test suites with a target compiler built on a fresh sysroot."""

    __test__ = False

    def __init__(
        self,
        dirs: Dirs,
        target_compiler: Compiler,
        use_unstable_features: bool,
        skip_tests: Iterable[str],
        is_native: bool,
        stdlib_source: str | os.PathLike[str],
        environ: Mapping[str, str] | None = None,
        config_path: str | os.PathLike[str] = config.DEFAULT_CONFIG,
    ):
        compiler = copy.deepcopy(target_compiler)
        compiler.rustflags.extend(rustflags_from_env("RUSTFLAGS", environ))
        compiler.rustdocflags.extend(rustflags_from_env("RUSTDOCFLAGS", environ))

        # Needed for `#[linkage = "extern_weak"]` on macOS.
        if "darwin" in compiler.triple:
            compiler.rustflags += ["-Clink-arg=-undefined", "-Clink-arg=dynamic_lookup"]

        self.is_native = is_native
        self.jit_supported = (
            use_unstable_features
            and is_native
            and "x86_64" in compiler.triple
            and "windows" not in compiler.triple
        )
        self.use_unstable_features = use_unstable_features
        self.skip_tests = list(skip_tests)
        self.dirs = dirs
        self.target_compiler = compiler
        self.stdlib_source = Path(stdlib_source)
        self.config_path = config_path

    def _is_enabled(self, name: str, is_jit_test: bool) -> bool:
        return (
            config.get_bool(name, self.config_path)
            and not (is_jit_test and not self.jit_supported)
            and name not in self.skip_tests
        )

    def run_testsuite(self, tests: Iterable[TestCase]) -> None:
        """Run every enabled test in order."""
        for test in tests:
            tag, _, testname = test.config.partition(".")
            tag = tag.upper()

            if not self._is_enabled(test.config, tag == "JIT"):
                print(f"[{tag}] {testname} (skipped)", file=sys.stderr)
                continue

            with LogGroup(f"[{tag}] {testname}"):
                print(f"[{tag}] {testname}", file=sys.stderr)
                self._run_case(test, testname)

    def _unstable_cfg(self) -> list[str]:
        return [] if self.use_unstable_features else ["--cfg", "no_unstable_features"]

    def _run_case(self, test: TestCase, testname: str) -> None:
        if test.kind == "custom":
            assert test.func is not None
            test.func(self)
        elif test.kind == "build_lib":
            self.run_rustc([test.source, "--crate-type", test.crate_types, *self._unstable_cfg()])
        elif test.kind == "build_bin":
            self.run_rustc([test.source, *self._unstable_cfg()])
        elif test.kind == "build_bin_and_run":
            self.run_rustc([test.source, *self._unstable_cfg()])
            name = test.source.split("/")[-1].split(".")[0]
            self.run_out_command(name, test.args)
        else:
            self._run_jit(test, "jit")
            print(f"[JIT-lazy] {testname}", file=sys.stderr)
            self._run_jit(test, "jit-lazy")

    def _run_jit(self, test: TestCase, mode: str) -> None:
        cmd = self.rustc_command(
            [
                "-Zunstable-options",
                f"-Cllvm-args=mode={mode}",
                "-Cprefer-dynamic",
                test.source,
                "--cfg",
                "jit",
            ]
        )
        if test.args:
            cmd.env["CG_CLIF_JIT_ARGS"] = " ".join(test.args)
        spawn_and_wait(cmd)

    def rustc_command(self, args: Iterable[str | os.PathLike[str]]) -> Command:
        """Return a rustc invocation that writes into the example output dir."""
        out_dir = BUILD_EXAMPLE_OUT_DIR.to_path(self.dirs)
        return Command(
            str(self.target_compiler.rustc),
            [
                *self.target_compiler.rustflags,
                "-L",
                f"crate={out_dir}",
                "--out-dir",
                str(out_dir),
                "-Cdebuginfo=2",
                "--target",
                self.target_compiler.triple,
                "-Cpanic=abort",
                *(os.fspath(arg) for arg in args),
            ],
        )

    def run_rustc(self, args: Iterable[str | os.PathLike[str]]) -> None:
        spawn_and_wait(self.rustc_command(args))

    def run_out_command(self, name: str, args: Sequence[str]) -> None:
        """Run a built example, through the target's runner if it has one."""
        program = str(BUILD_EXAMPLE_OUT_DIR.to_path(self.dirs) / name)
        first, *rest = [*self.target_compiler.runner, program, *args]
        spawn_and_wait(Command(first, rest))


def run_tests(
    dirs: Dirs,
    channel: str,
    sysroot_kind: SysrootKind,
    use_unstable_features: bool,
    skip_tests: Sequence[str],
    cg_clif_dylib: CodegenBackend,
    bootstrap_host_compiler: Compiler,
    rustup_toolchain_name: str | None,
    target_triple: str,
) -> None:
    """Build the sysroots needed and run the enabled test suites."""
    stdlib_source = (
        get_default_sysroot(bootstrap_host_compiler.rustc) / "lib" / "rustlib" / "src" / "rust"
    )
    if not stdlib_source.exists():
        raise FileNotFoundError(f"Standard library sources not found at {stdlib_source}")

    is_native = bootstrap_host_compiler.triple == target_triple

    if config.get_bool("testsuite.no_sysroot") and "testsuite.no_sysroot" not in skip_tests:
        target_compiler = build_sysroot(
            dirs,
            channel,
            SysrootKind.NONE,
            cg_clif_dylib,
            bootstrap_host_compiler,
            rustup_toolchain_name,
            target_triple,
        )
        runner = TestRunner(
            dirs, target_compiler, use_unstable_features, skip_tests, is_native, stdlib_source
        )
        BUILD_EXAMPLE_OUT_DIR.ensure_fresh(dirs)
        runner.run_testsuite(NO_SYSROOT_SUITE)
    else:
        print("[SKIP] no_sysroot tests", file=sys.stderr)

    run_base_sysroot = (
        config.get_bool("testsuite.base_sysroot") and "testsuite.base_sysroot" not in skip_tests
    )
    run_extended_sysroot = (
        config.get_bool("testsuite.extended_sysroot")
        and "testsuite.extended_sysroot" not in skip_tests
    )

    if not (run_base_sysroot or run_extended_sysroot):
        return

    target_compiler = build_sysroot(
        dirs,
        channel,
        sysroot_kind,
        cg_clif_dylib,
        bootstrap_host_compiler,
        rustup_toolchain_name,
        target_triple,
    )
    # Several test projects trip lints that the toolchain denies; silence them all.
    target_compiler.rustflags.append("--cap-lints=allow")

    runner = TestRunner(
        dirs, target_compiler, use_unstable_features, skip_tests, is_native, stdlib_source
    )

    if run_base_sysroot:
        runner.run_testsuite(BASE_SYSROOT_SUITE)
    else:
        print("[SKIP] base_sysroot tests", file=sys.stderr)

    if run_extended_sysroot:
        runner.run_testsuite(EXTENDED_SYSROOT_SUITE)
    else:
        print("[SKIP] extended_sysroot tests", file=sys.stderr)