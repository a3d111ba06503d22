import pytest

from clifbuild.filter_profile import filter_line, filter_profile, main


def test_line_without_backend_is_dropped():
    assert filter_line("main;rustc_driver::run;rustc_middle::x 12") is None


def test_excluded_samples_are_dropped():
    line = (
        "rustc_codegen_cranelift::f;"
        "rustc_symbol_mangling::test::report_symbol_names;x 4"
    )
    assert filter_line(line) is None


def test_uninteresting_start_is_trimmed():
    line = "main;rustc_interface::passes::analysis;rustc_codegen_cranelift::x 5"
    assert filter_line(line) == "rustc_interface::passes::analysis;rustc_codegen_cranelift::x 5"


def test_module_codegen_start_takes_precedence():
    line = (
        "rustc_interface::passes::start_codegen;a;"
        "rustc_codegen_cranelift::driver::aot::module_codegen;b 7"
    )
    assert filter_line(line) == "rustc_codegen_cranelift::driver::aot::module_codegen;b 7"


def test_end_is_trimmed_after_allocation():
    line = "rustc_codegen_cranelift::f;malloc;_int_malloc_inner 3"
    assert filter_line(line) == "rustc_codegen_cranelift::f;malloc 3"


def test_count_is_kept_from_last_space():
    line = "rustc_codegen_cranelift::f with space 42"
    assert filter_line(line) == line


def test_line_without_count_raises():
    with pytest.raises(ValueError):
        filter_line("rustc_codegen_cranelift::f")


def test_filter_profile_keeps_only_interesting_lines():
    lines = [
        "main;other 1",
        "rustc_codegen_cranelift::a 2",
        "rustc_codegen_cranelift::b;free;x 3",
    ]
    assert list(filter_profile(lines)) == [
        "rustc_codegen_cranelift::a 2",
        "rustc_codegen_cranelift::b;free 3",
    ]


def test_main_writes_filtered_profile(tmp_path):
    profile = tmp_path / "profile.txt"
    profile.write_text("main;other 1\nrustc_codegen_cranelift::a 2\n")
    output = tmp_path / "out.txt"
    assert main([str(profile), str(output)]) == 0
    assert output.read_text() == "rustc_codegen_cranelift::a 2\n"


def test_main_without_arguments_prints_usage(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().out


def test_main_with_missing_profile_fails(tmp_path, capsys):
    assert main([str(tmp_path / "missing.txt"), str(tmp_path / "out.txt")]) == 1
    assert "Failed to read profile" in capsys.readouterr().err