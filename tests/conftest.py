# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Shared pytest fixtures and fake collaborators."""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Callable
from pathlib import Path

import pytest

from cratepipe.config import PipelineConfig
from cratepipe.models import BuildInputSpec, PackageIdentity, SourceTree, ToolchainIdentity
from cratepipe.store import InMemoryCacheStore
from cratepipe.toolchain import CargoToolchain, ToolRun

VALID_MAIN = 'fn main() {\n    println!("{}", d::greet());\n}\n'
BROKEN_MAIN = 'fn main() {\n    println!("{}", d::greet());\n'
UNFORMATTED_MAIN = 'fn main() {   \n    println!("{}", d::greet());\n}\n'
WARNING_MAIN = 'fn main() {\n    let unused = 1;\n    println!("{}", d::greet());\n}\n'

MANIFEST = """[package]
name = "app"
version = "0.1.0"
edition = "2021"

[dependencies]
d = "1"
"""


def lock_file(d_version: str = "1.0.0", *, extra: str = "") -> str:
    """Return a lock file pinning ``d`` to ``d_version``."""

    return f"""version = 3

[[package]]
name = "app"
version = "0.1.0"
dependencies = [
 "d",
]

[[package]]
name = "d"
version = "{d_version}"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "{d_version.replace('.', '')}abc"
{extra}"""


BROKEN_LOCK_EXTRA = """
[[package]]
name = "broken"
version = "0.0.1"
source = "registry+https://github.com/rust-lang/crates.io-index"
"""


def write_repo(
    root: Path,
    *,
    main: str = VALID_MAIN,
    lock: str | None = None,
    extra_files: dict[str, str] | None = None,
) -> Path:
    """Write a small Cargo repository under ``root`` and return it."""

    files = {
        "Cargo.toml": MANIFEST,
        "Cargo.lock": lock if lock is not None else lock_file(),
        "src/main.rs": main,
        "templates/index.html": "<h1>{{ title }}</h1>\n",
        "README.md": "# app\n",
        "target/release/stale": "old output\n",
        ".git/HEAD": "ref: refs/heads/main\n",
        **(extra_files or {}),
    }
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def _rust_sources(workdir: Path) -> list[Path]:
    return sorted(path for path in workdir.rglob("*.rs") if "target" not in path.relative_to(workdir).parts)


def _syntax_error(workdir: Path) -> str | None:
    for path in _rust_sources(workdir):
        text = path.read_text(encoding="utf-8")
        if text.count("{") != text.count("}"):
            return f"error: this file contains an unclosed delimiter\n --> {path.relative_to(workdir).as_posix()}"
    return None


class FakeToolchain:
    """Toolchain double recording every invocation.

    Dependency builds fail when the lock file pins a package named
    ``broken``; compiling steps fail on unbalanced braces; clippy denies the
    unused-variable warning raised by ``let unused``; the format check fails
    on trailing whitespace.
    """

    DEPS_OUTPUT = "release/deps/libd.rlib"

    def __init__(self, *, version: str = "1.80.0", components: tuple[str, ...] = ("rust-src",)) -> None:
        self._identity = ToolchainIdentity(channel="stable", version=version, components=components)
        self.calls: Counter[str] = Counter()
        self.workdirs: dict[str, list[Path]] = {}
        self._lock = threading.Lock()

    @property
    def identity(self) -> ToolchainIdentity:
        return self._identity

    def _record(self, operation: str, workdir: Path) -> None:
        with self._lock:
            self.calls[operation] += 1
            self.workdirs.setdefault(operation, []).append(workdir)

    def build_dependencies(self, workdir: Path) -> ToolRun:
        self._record("deps", workdir)
        lock = (workdir / "Cargo.lock").read_text(encoding="utf-8")
        if 'name = "broken"' in lock:
            return ToolRun(("cargo", "build"), 101, stderr="error: failed to select a version for `broken`")
        output = workdir / "target" / self.DEPS_OUTPUT
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(lock, encoding="utf-8")
        return ToolRun(("cargo", "build"), 0)

    def build_package(self, workdir: Path) -> ToolRun:
        self._record("package", workdir)
        failure = self._compile(workdir)
        if failure is not None:
            return failure
        binary = workdir / "target" / "release" / "app"
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_bytes((workdir / "src" / "main.rs").read_bytes())
        return ToolRun(("cargo", "build"), 0)

    def clippy(self, workdir: Path) -> ToolRun:
        self._record("clippy", workdir)
        failure = self._compile(workdir)
        if failure is not None:
            return failure
        for path in _rust_sources(workdir):
            if "let unused" in path.read_text(encoding="utf-8"):
                location = path.relative_to(workdir).as_posix()
                return ToolRun(
                    ("cargo", "clippy"),
                    101,
                    stderr=f"error: unused variable: `unused`\n --> {location}\n = note: `-D warnings` denies it",
                )
        return ToolRun(("cargo", "clippy"), 0)

    def doc(self, workdir: Path) -> ToolRun:
        self._record("doc", workdir)
        return self._compile(workdir) or ToolRun(("cargo", "doc"), 0)

    def fmt_check(self, workdir: Path) -> ToolRun:
        self._record("fmt", workdir)
        for path in _rust_sources(workdir):
            for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
                if line != line.rstrip():
                    location = f"{path.relative_to(workdir).as_posix()}:{number}"
                    return ToolRun(("cargo", "fmt"), 1, stdout=f"Diff in {location}")
        return ToolRun(("cargo", "fmt"), 0)

    def package_outputs(self, workdir: Path) -> dict[str, bytes]:
        return CargoToolchain().package_outputs(workdir)

    def _compile(self, workdir: Path) -> ToolRun | None:
        if not (workdir / "target" / self.DEPS_OUTPUT).is_file():
            return ToolRun(("cargo",), 101, stderr="error: dependency closure was not restored")
        error = _syntax_error(workdir)
        if error is not None:
            return ToolRun(("cargo",), 101, stderr=error)
        return None


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    return write_repo(tmp_path / "repo")


@pytest.fixture
def make_spec() -> Callable[..., BuildInputSpec]:
    """Return a factory building specs directly from file mappings."""

    def factory(
        *,
        main: str = VALID_MAIN,
        lock: str | None = None,
        identity: PackageIdentity | None = None,
    ) -> BuildInputSpec:
        tree = SourceTree.from_files(
            {
                "Cargo.toml": MANIFEST.encode(),
                "Cargo.lock": (lock if lock is not None else lock_file()).encode(),
                "src/main.rs": main.encode(),
            }
        )
        return BuildInputSpec(source=tree, identity=identity or PackageIdentity(name="app", version="0.1.0"))

    return factory


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig.model_validate({"execution": {"jobs": 4}})
