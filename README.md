# clifbuild

`clifbuild` drives the build of a Cranelift-based codegen backend for
rustc. It downloads and patches the third-party crates used for testing,
builds the backend with cargo, assembles a sysroot (the standard library
compiled with the backend, or the libraries of the installed LLVM
toolchain), runs the test suites and benchmarks, and comes with a filter
for stackcollapse profiles.

It is run from the root of a checkout of the backend. That directory must
hold `Cargo.toml` for the backend, a `config.txt`, a `scripts/` directory
with the compiler wrapper programs (`rustc-clif.rs`, `rustdoc-clif.rs`,
`cargo-clif.rs`) and a `patches/` directory with `*.patch` files and lock
files.

## Installation

```
pip install .
```

The programs it starts must be on `PATH`: `cargo`, `rustc` and `rustdoc`
(normally through `rustup`), `git`, `curl` and `tar` for downloads, and
`hyperfine` for benchmarks.

## Commands

```
clifbuild prepare     # download the crates used by the extended test suite
clifbuild build       # build the backend and the sysroot into dist/
clifbuild test        # build, then run the test suites enabled in config.txt
clifbuild abi-cafe    # build, then run the abi-cafe ABI checker (no cross-compiling)
clifbuild bench       # build, then benchmark compile and run times with hyperfine
```

Running `clifbuild` with no command prints the usage text and exits with
status 0. A bad command line prints the error and the usage text and exits
with status 1; so does a failed command, a configuration error or a
missing file.

### Options

| Option | Meaning |
| --- | --- |
| `--out-dir DIR` | put `build/`, `dist/` and `download/` under `DIR` (default `.`) |
| `--download-dir DIR` | where downloaded crates are kept (default `OUT_DIR/download`) |
| `--debug` | build in the debug channel instead of release |
| `--sysroot none\|clif\|llvm` | which kind of sysroot to build (default `clif`) |
| `--no-unstable-features` | build without the `unstable-features` cargo feature |
| `--frozen` | pass `--frozen` to every cargo invocation |
| `--skip-test NAME` | skip a test or suite, e.g. `aot.mod_bench` or `testsuite.base_sysroot`; may be repeated |
| `--use-backend NAME` | use a backend built into rustc instead of building one |

For example:

```
clifbuild test --debug --sysroot clif --skip-test test.regex
```

### config.txt

One entry per line; `#` starts a comment. A bare key turns a flag on and
`key = value` sets a value. A flag given a value, a value key given
without one, or a value key given more than once raises
`clifbuild.config.ConfigError`.

```
host = x86_64-unknown-linux-gnu
keep_sysroot
testsuite.no_sysroot
testsuite.base_sysroot
build.mini_core
aot.mini_core_hello_world
```

Each test runs only if its own key (such as `aot.std_example` or
`test.regex`) is set, and each suite only if its `testsuite.*` key is set.

### Environment

- `CARGO`, `RUSTC`, `RUSTDOC`: set all three or none; when none are set the
  active rustup toolchain is used.
- `HOST_TRIPLE`, `TARGET_TRIPLE`: take precedence over the `host` and
  `target` config entries; a target triple that differs from the host means
  cross-compiling.
- `RUSTFLAGS`, `CARGO_ENCODED_RUSTFLAGS`, `RUSTDOCFLAGS`: extra compiler
  flags, the encoded form taking precedence.
- `CI`, `CI_OPT`: CI mode denies warnings and turns incremental builds off.
- `CG_CLIF_STDLIB_REMAP_PATH_PREFIX`: remap the standard library path in
  the built sysroot.
- `BENCH_RUNS`: number of benchmark runs (default 10).
- `GITHUB_STEP_SUMMARY`, `GITHUB_ACTIONS`: benchmark tables appended to the
  step summary, and grouped log output.

## Filtering profiles

`clif-filter-profile` keeps only the samples of a stackcollapse profile
that pass through the codegen backend, trims uninteresting leading and
trailing frames, and writes the result:

```
clif-filter-profile profile.folded filtered.folded
```

## Using it from Python

The pieces are plain functions and classes, for instance:

- `clifbuild.config.parse_config`, `get_bool`, `get_value`
- `clifbuild.rustflags.rustflags_from_env`, `rustflags_to_env`
- `clifbuild.path.Dirs` and `clifbuild.path.RelPath`
- `clifbuild.utils.Command`, `Compiler`, `CargoProject`, `hyperfine_command`,
  `git_command`, `spawn_and_wait`, `LogGroup`
- `clifbuild.prepare.GitRepo`, `hash_dir`, `apply_patches`
- `clifbuild.siphash.SipHasher` and `siphash24`
- `clifbuild.filter_profile.filter_line` and `filter_profile`
- `clifbuild.wrappers.compiler_args` and `cargo_invocation`, which compute
  the arguments and flags the compiler wrappers add

Failed commands raise `clifbuild.utils.CommandFailed`.

## What it does not do

`clifbuild` does not contain the codegen backend, the example programs the
test suites compile, the wrapper programs in `scripts/` or the patches; all
of them come from the checkout it is run in. The functions in
`clifbuild.wrappers` are not installed as commands: `clifbuild build`
compiles the wrapper programs from `scripts/` with rustc into `dist/`.