# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""End-to-end tests for the pipeline entry points and graph run."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import BROKEN_LOCK_EXTRA, BROKEN_MAIN, FakeToolchain, lock_file, write_repo

from cratepipe import Pipeline
from cratepipe.config import PipelineConfig
from cratepipe.errors import CompilationError, ConfigError, DependencyResolutionError, IncompleteChecksError
from cratepipe.store import FileCacheStore, InMemoryCacheStore


def make_pipeline(
    root: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore | FileCacheStore,
    config: PipelineConfig,
) -> Pipeline:
    return Pipeline(root, config=config, toolchain=toolchain, store=store)


def test_clean_repository_passes_end_to_end(
    repo: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    report = make_pipeline(repo, toolchain, store, config).run()

    assert report.ok
    assert report.dependencies is not None
    assert report.package is not None
    assert report.package.identity.label == "app-0.1.0"
    assert [result.name for result in report.checks] == ["build", "clippy", "doc", "fmt"]
    assert report.environment is not None
    assert {"cargo", "rustfmt", "clippy", "rust-src", "cargo-edit", "gh"} <= set(report.environment.tool_names())
    assert toolchain.calls["deps"] == 1
    assert toolchain.calls["package"] == 1


def test_syntax_error_keeps_dependencies_and_fmt_definite(
    tmp_path: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    root = write_repo(tmp_path / "repo", main=BROKEN_MAIN)

    report = make_pipeline(root, toolchain, store, config).run()

    assert report.dependencies is not None
    assert report.package is None
    assert isinstance(report.errors["package"], CompilationError)
    assert "deps" not in report.errors
    assert report.skipped == ()
    results = {result.name: result for result in report.checks}
    assert results["fmt"].passed
    assert not results["build"].passed
    assert not results["clippy"].passed
    assert "unclosed delimiter" in results["clippy"].diagnostics
    assert toolchain.calls["package"] == 1
    assert report.environment is not None


def test_unresolvable_dependencies_skip_dependent_nodes(
    tmp_path: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    root = write_repo(tmp_path / "repo", lock=lock_file(extra=BROKEN_LOCK_EXTRA))

    report = make_pipeline(root, toolchain, store, config).run()

    assert isinstance(report.errors["deps"], DependencyResolutionError)
    assert sorted(report.skipped) == ["check:build", "check:clippy", "check:doc", "package"]
    assert [result.name for result in report.checks] == ["fmt"]
    assert report.checks[0].passed
    assert report.environment is not None
    assert not report.ok


def test_identical_repository_twice_is_a_cache_hit(
    repo: Path,
    toolchain: FakeToolchain,
    config: PipelineConfig,
    tmp_path: Path,
) -> None:
    store = FileCacheStore(tmp_path / "cache")

    first = make_pipeline(repo, toolchain, store, config).build_package()
    second = make_pipeline(repo, toolchain, store, config).build_package()

    assert second.key == first.key
    assert toolchain.calls["deps"] == 1
    assert toolchain.calls["package"] == 1


def test_source_change_skips_dependency_step(
    repo: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    first = make_pipeline(repo, toolchain, store, config).build_package()
    (repo / "src" / "main.rs").write_text('fn main() {\n    println!("v2");\n}\n', encoding="utf-8")

    second = make_pipeline(repo, toolchain, store, config).build_package()

    assert second.key != first.key
    assert second.dependency_key == first.dependency_key
    assert toolchain.calls["deps"] == 1
    assert toolchain.calls["package"] == 2


def test_lock_change_rebuilds_and_keeps_old_artifact(
    repo: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    old = make_pipeline(repo, toolchain, store, config).build_dependencies()
    (repo / "Cargo.lock").write_text(lock_file("1.1.0"), encoding="utf-8")

    new = make_pipeline(repo, toolchain, store, config).build_dependencies()

    assert new.key != old.key
    assert toolchain.calls["deps"] == 2
    assert store.fetch(old.key) is not None


def test_entry_points_memoise_inputs(
    repo: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    pipeline = make_pipeline(repo, toolchain, store, config)

    assert pipeline.filter_sources() is pipeline.filter_sources()
    assert pipeline.build_dependencies() is pipeline.build_dependencies()
    pipeline.run_checks()
    assert toolchain.calls["deps"] == 1


def test_run_checks_reports_fmt_when_dependencies_fail(
    tmp_path: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    root = write_repo(tmp_path / "repo", lock=lock_file(extra=BROKEN_LOCK_EXTRA))

    with pytest.raises(IncompleteChecksError) as excinfo:
        make_pipeline(root, toolchain, store, config).run_checks()

    assert [result.name for result in excinfo.value.results] == ["fmt"]
    assert excinfo.value.results[0].passed
    assert list(excinfo.value.errors) == ["build", "clippy", "doc"]
    assert isinstance(excinfo.value.__cause__, DependencyResolutionError)
    assert "broken" in excinfo.value.errors["clippy"].context["diagnostics"]
    assert toolchain.calls["deps"] == 1
    assert toolchain.calls["fmt"] == 1


def test_run_check_fmt_does_not_build_dependencies(
    repo: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    result = make_pipeline(repo, toolchain, store, config).run_check("fmt")

    assert result.passed
    assert toolchain.calls["deps"] == 0


def test_default_store_lives_in_excluded_cache_dir(
    repo: Path,
    toolchain: FakeToolchain,
    config: PipelineConfig,
) -> None:
    first = Pipeline(repo, config=config, toolchain=toolchain)
    first.build_package()
    second = Pipeline(repo, config=config, toolchain=toolchain)

    assert (repo / ".cratepipe-cache").is_dir()
    assert second.filter_sources().digest == first.filter_sources().digest
    second.build_package()
    assert toolchain.calls["package"] == 1


def test_compose_environment_includes_every_declaration(
    repo: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    pipeline = make_pipeline(repo, toolchain, store, config)

    environment = pipeline.compose_environment()

    assert environment.sources == ("check:build", "check:clippy", "check:doc", "check:fmt", "package")
    assert "nixpkgs-fmt" in environment.tool_names()
    assert toolchain.calls == {}


def test_unknown_enabled_check_is_a_config_error(repo: Path, toolchain: FakeToolchain) -> None:
    config = PipelineConfig.model_validate({"checks": {"enabled": ["fmt", "miri"]}})

    with pytest.raises(ConfigError):
        Pipeline(repo, config=config, toolchain=toolchain, store=InMemoryCacheStore())


def test_missing_identity_is_reported(
    tmp_path: Path,
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    config: PipelineConfig,
) -> None:
    root = write_repo(tmp_path / "repo", extra_files={"Cargo.toml": "[workspace]\nmembers = []\n"})

    report = make_pipeline(root, toolchain, store, config).run()

    assert isinstance(report.errors["sources"], ConfigError)
    assert "package" in report.skipped
    assert report.checks == ()
