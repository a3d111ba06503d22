[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clifbuild"
version = "0.1.0"
description = "Build driver for a Cranelift-based rustc codegen backend: fetches and patches test crates, builds the backend and a sysroot, runs test suites and benchmarks, and filters profiles."
requires-python = ">=3.10"
dependencies = []
keywords = ["rust", "rustc", "cranelift", "codegen", "sysroot", "cargo", "build"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: Software Development :: Compilers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
clifbuild = "clifbuild.cli:main"
clif-filter-profile = "clifbuild.filter_profile:main"

[tool.hatch.build.targets.wheel]
packages = ["clifbuild"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
