# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Build the final package artifact against a cached dependency closure."""

from __future__ import annotations

import logging
import threading
import weakref
from collections import OrderedDict
from typing import Final

from .deps import DependencyCacheBuilder
from .errors import CompilationError, DependencyResolutionError, ToolchainError
from .hashing import package_key
from .lockfile import extract_lock_file, lock_hash
from .models import BuildInputSpec, DependencyCacheArtifact, PackageArtifact, ToolRequirement
from .scratch import scratch_workdir
from .store import CacheEntry, CacheStats, CacheStore
from .toolchain import Toolchain

LOGGER = logging.getLogger(__name__)

FAILURE_MEMO_SIZE: Final[int] = 64


class PackageBuilder:
    """Compile the full source tree, never recompiling cached dependencies.

    Builds are single-flight per artifact key: concurrent callers asking for
    the same key (the package step and the build check of one run) wait for
    the first compilation and share its outcome, including a failure.
    Compile failures are remembered for the most recent
    ``FAILURE_MEMO_SIZE`` keys; a tool that could not run is never
    remembered.
    """

    def __init__(self, toolchain: Toolchain, store: CacheStore, dependencies: DependencyCacheBuilder) -> None:
        """Create a builder publishing into ``store``.

        Args:
            toolchain: Toolchain compiling the package.
            store: Content-addressed store shared with other components.
            dependencies: Builder used to restore dependency artifacts.
        """

        self._toolchain = toolchain
        self._store = store
        self._dependencies = dependencies
        self._key_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._failures: OrderedDict[str, CompilationError] = OrderedDict()
        self._guard = threading.Lock()
        self.stats = CacheStats()

    def build_package(self, spec: BuildInputSpec, deps: DependencyCacheArtifact) -> PackageArtifact:
        """Return the package artifact for ``spec`` built against ``deps``.

        Args:
            spec: Build inputs holding the full source tree.
            deps: Dependency artifact built from the same lock file.

        Returns:
            PackageArtifact: Stored or freshly built artifact.

        Raises:
            DependencyResolutionError: If ``deps`` was built from another lock
                file or is no longer stored.
            CompilationError: If the source fails to compile.
            ToolchainError: If the compiler could not run at all.
        """

        current_lock = lock_hash(extract_lock_file(spec.source))
        if current_lock != deps.lock_hash:
            raise DependencyResolutionError(
                "Dependency artifact was built from a different lock file.",
                hint="Rebuild dependencies for the current lock file.",
                context={"expected": current_lock, "actual": deps.lock_hash, "key": deps.key},
            )
        key = package_key(spec.source.digest, deps.key)
        with self._lock_for(key):
            cached = self._store.fetch(key)
            if cached is not None:
                self.stats.record_hit()
                LOGGER.debug("package cache hit %s", key)
                artifact = PackageArtifact.model_validate(dict(cached.manifest))
                return artifact.model_copy(update={"identity": spec.identity})
            failure = self._remembered_failure(key)
            if failure is not None:
                raise failure
            return self._compile(spec, deps, key)

    def _compile(self, spec: BuildInputSpec, deps: DependencyCacheArtifact, key: str) -> PackageArtifact:
        target_files = self._dependencies.restore(deps)
        with scratch_workdir(spec.source, prefix="package", target_files=target_files) as workdir:
            run = self._toolchain.build_package(workdir)
            if run.infrastructure_failure:
                raise ToolchainError(
                    f"Compiler for package {spec.identity.label} could not run.",
                    hint=run.diagnostics or None,
                    context={"package": spec.identity.label, "returncode": str(run.returncode)},
                )
            if not run.ok:
                error = CompilationError(
                    f"Package {spec.identity.label} failed to compile.",
                    diagnostics=run.diagnostics,
                    context={
                        "package": spec.identity.label,
                        "source_digest": spec.source.digest,
                        "dependency_key": deps.key,
                    },
                )
                self._remember_failure(key, error)
                raise error
            outputs = self._toolchain.package_outputs(workdir)

        artifact = PackageArtifact(
            key=key,
            identity=spec.identity,
            source_digest=spec.source.digest,
            dependency_key=deps.key,
            outputs=tuple(outputs),
        )
        self._store.publish_if_absent(CacheEntry(key=key, manifest=artifact.model_dump(mode="json"), files=outputs))
        self.stats.record_build()
        LOGGER.info("built package %s as %s", spec.identity.label, key)
        return artifact

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._key_locks.setdefault(key, threading.Lock())

    def _remembered_failure(self, key: str) -> CompilationError | None:
        with self._guard:
            failure = self._failures.get(key)
            if failure is not None:
                self._failures.move_to_end(key)
            return failure

    def _remember_failure(self, key: str, error: CompilationError) -> None:
        with self._guard:
            self._failures[key] = error
            self._failures.move_to_end(key)
            while len(self._failures) > FAILURE_MEMO_SIZE:
                self._failures.popitem(last=False)

    def requirements(self) -> tuple[ToolRequirement, ...]:
        """Return the tools the package build needs."""

        return self._dependencies.requirements()


__all__ = ["FAILURE_MEMO_SIZE", "PackageBuilder"]
