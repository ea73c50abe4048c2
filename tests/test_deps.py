# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the dependency cache builder."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from conftest import BROKEN_LOCK_EXTRA, BROKEN_MAIN, FakeToolchain, lock_file

from cratepipe.deps import DependencyCacheBuilder
from cratepipe.errors import DependencyResolutionError
from cratepipe.lockfile import MAIN_STUB, lock_hash
from cratepipe.models import BuildInputSpec, PackageIdentity
from cratepipe.store import InMemoryCacheStore


def test_build_deps_publishes_closure(
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    builder = DependencyCacheBuilder(toolchain, store)
    spec = make_spec()

    artifact = builder.build_deps(spec)

    assert artifact.key.startswith("deps-")
    assert artifact.lock_hash == lock_hash(lock_file().encode())
    assert [package.label for package in artifact.dependencies] == ["d@1.0.0"]
    assert artifact.outputs == (FakeToolchain.DEPS_OUTPUT,)
    assert artifact.key in store
    assert builder.stats.builds == 1


def test_build_deps_never_sees_application_source(
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    builder = DependencyCacheBuilder(toolchain, store)
    seen: list[bytes] = []
    original = toolchain.build_dependencies

    def capture(workdir):
        seen.append((workdir / "src" / "main.rs").read_bytes())
        return original(workdir)

    toolchain.build_dependencies = capture  # type: ignore[method-assign]

    builder.build_deps(make_spec(main=BROKEN_MAIN))

    assert seen == [MAIN_STUB]


def test_equal_lock_files_share_one_build(
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    builder = DependencyCacheBuilder(toolchain, store)

    first = builder.build_deps(make_spec())
    second = builder.build_deps(make_spec(main="fn main() { other(); }\n"))

    assert first.key == second.key
    assert toolchain.calls["deps"] == 1
    assert builder.stats.hits == 1


def test_identity_tags_without_changing_key(
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    builder = DependencyCacheBuilder(toolchain, store)
    renamed = PackageIdentity(name="renamed", version="9.9.9")

    first = builder.build_deps(make_spec())
    second = builder.build_deps(make_spec(identity=renamed))

    assert second.key == first.key
    assert second.identity == renamed
    assert toolchain.calls["deps"] == 1


def test_lock_change_produces_new_key_and_keeps_old_artifact(
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    builder = DependencyCacheBuilder(toolchain, store)

    old = builder.build_deps(make_spec(lock=lock_file("1.0.0")))
    new = builder.build_deps(make_spec(lock=lock_file("1.1.0")))

    assert old.key != new.key
    assert toolchain.calls["deps"] == 2
    assert old.key in store
    assert builder.restore(old) == {FakeToolchain.DEPS_OUTPUT: lock_file("1.0.0").encode()}


def test_toolchain_change_produces_new_key(
    store: InMemoryCacheStore,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    spec = make_spec()

    first = DependencyCacheBuilder(FakeToolchain(version="1.80.0"), store).cache_key(spec)
    second = DependencyCacheBuilder(FakeToolchain(version="1.81.0"), store).cache_key(spec)

    assert first != second


def test_unresolvable_closure_raises_with_context(
    toolchain: FakeToolchain,
    store: InMemoryCacheStore,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    builder = DependencyCacheBuilder(toolchain, store)

    with pytest.raises(DependencyResolutionError) as excinfo:
        builder.build_deps(make_spec(lock=lock_file(extra=BROKEN_LOCK_EXTRA)))

    assert excinfo.value.context["package"] == "app-0.1.0"
    assert "broken" in excinfo.value.context["diagnostics"]
    assert len(store) == 0


def test_restore_requires_stored_entry(
    toolchain: FakeToolchain,
    make_spec: Callable[..., BuildInputSpec],
) -> None:
    artifact = DependencyCacheBuilder(toolchain, InMemoryCacheStore()).build_deps(make_spec())

    with pytest.raises(DependencyResolutionError):
        DependencyCacheBuilder(toolchain, InMemoryCacheStore()).restore(artifact)
