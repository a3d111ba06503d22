"""Filter and trim samples of a stackcollapse profile to the interesting frames."""

from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator
from pathlib import Path

USAGE = "Usage: filter_profile <profile in stackcollapse format> <output file>"

_EXCLUDED = (
    "rustc_monomorphize::partitioning::collect_and_partition_mono_items",
    "rustc_incremental::assert_dep_graph::assert_dep_graph",
    "rustc_symbol_mangling::test::report_symbol_names",
)

_START_MARKERS = (
    "rustc_interface::passes::configure_and_expand",
    "rustc_interface::passes::analysis",
    "rustc_interface::passes::start_codegen",
    "rustc_interface::queries::Linker::link",
)

_CODEGEN_START = "rustc_codegen_cranelift::driver::aot::module_codegen"

_END_MARKERS = (
    "malloc",
    "free",
    "rustc_typeck::check::typeck_item_bodies",
    "rustc_monomorphize::partitioning::collect_and_partition_mono_items",
    "rustc_incremental::assert_dep_graph::assert_dep_graph",
    "rustc_symbol_mangling::test::report_symbol_names",
    "rustc_metadata::rmeta::encoder::encode_metadata",
    "rustc_middle::ty::normalize_erasing_regions::<impl rustc_middle::ty::context::TyCtxt>"
    "::instantiate_and_normalize_erasing_regions",
    "rustc_middle::ty::normalize_erasing_regions::<impl rustc_middle::ty::context::TyCtxt>"
    "::normalize_erasing_late_bound_regions",
    "<cranelift_frontend::frontend::FuncInstBuilder as "
    "cranelift_codegen::ir::builder::InstBuilderBase>::build",
)


def filter_line(line: str) -> str | None:
    """Return the trimmed sample, or ``None`` if the sample is uninteresting."""
    stack, sep, count = line.rpartition(" ")
    if not sep:
        raise ValueError(f"Profile line without a sample count: {line!r}")

    if "rustc_codegen_cranelift" not in stack:
        return None
    if any(marker in stack for marker in _EXCLUDED):
        return None

    for marker in _START_MARKERS:
        index = stack.find(marker)
        if index != -1:
            stack = stack[index:]
            break

    index = stack.find(_CODEGEN_START)
    if index != -1:
        stack = stack[index:]

    for marker in _END_MARKERS:
        index = stack.find(marker)
        if index != -1:
            stack = stack[:index + len(marker)]

    return f"{stack} {count}"


def filter_profile(lines: Iterable[str]) -> Iterator[str]:
    """Yield the trimmed samples of the interesting lines."""
    for line in lines:
        filtered = filter_line(line)
        if filtered is not None:
            yield filtered


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 2 or not args[0] or not args[1]:
        print(USAGE)
        return 1
    profile_name, output_name = args[0], args[1]
    try:
        profile = Path(profile_name).read_text()
    except OSError as err:
        print(f"Failed to read profile {err}", file=sys.stderr)
        return 1
    with open(output_name, "w") as output:
        for line in filter_profile(profile.splitlines()):
            output.write(line + "\n")
    return 0