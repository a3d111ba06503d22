"""Build driver for a Cranelift-based rustc codegen backend: sources, sysroot, tests, benchmarks."""

__version__ = "0.1.0"

__all__ = [
    "abi_cafe",
    "bench",
    "build_backend",
    "build_sysroot",
    "cli",
    "config",
    "filter_profile",
    "fsutil",
    "path",
    "prepare",
    "rustc_info",
    "rustflags",
    "siphash",
    "testsuite",
    "utils",
    "wrappers",
]