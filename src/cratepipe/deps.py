# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Build and cache the external dependency closure of a package."""

from __future__ import annotations

import logging

from .errors import DependencyResolutionError
from .hashing import dependency_cache_key
from .lockfile import dependency_only_tree, external_dependencies, extract_lock_file, lock_hash, parse_lock_file
from .models import BuildInputSpec, DependencyCacheArtifact, ToolRequirement
from .scratch import scratch_workdir, snapshot_files
from .store import CacheEntry, CacheStats, CacheStore
from .toolchain import TARGET_DIR_NAME, Toolchain

LOGGER = logging.getLogger(__name__)


class DependencyCacheBuilder:
    """Compile only what the lock file pins, once per lock file and toolchain.

    Application source never reaches the toolchain here: the build runs
    against a stubbed tree, so source edits reuse the cached closure and a
    broken source file cannot fail this step.
    """

    def __init__(self, toolchain: Toolchain, store: CacheStore) -> None:
        """Create a builder publishing into ``store``.

        Args:
            toolchain: Toolchain compiling the dependency closure.
            store: Content-addressed store shared with other components.
        """

        self._toolchain = toolchain
        self._store = store
        self.stats = CacheStats()

    def cache_key(self, spec: BuildInputSpec) -> str:
        """Return the cache key ``spec`` resolves to without building."""

        content = extract_lock_file(spec.source)
        return dependency_cache_key(lock_hash(content), self._toolchain.identity.fingerprint)

    def build_deps(self, spec: BuildInputSpec) -> DependencyCacheArtifact:
        """Return the dependency artifact for ``spec``, building it on a miss.

        Args:
            spec: Build inputs; only the lock file and manifests are read.

        Returns:
            DependencyCacheArtifact: Stored or freshly built artifact tagged
            with the identity of ``spec``.

        Raises:
            DependencyResolutionError: If the lock file is missing or invalid,
                or the closure fails to resolve or compile.
        """

        content = extract_lock_file(spec.source)
        digest = lock_hash(content)
        packages = parse_lock_file(content)
        toolchain = self._toolchain.identity
        key = dependency_cache_key(digest, toolchain.fingerprint)

        cached = self._store.fetch(key)
        if cached is not None:
            self.stats.record_hit()
            LOGGER.debug("dependency cache hit %s for %s", key, spec.identity.label)
            artifact = DependencyCacheArtifact.model_validate(dict(cached.manifest))
            return artifact.model_copy(update={"identity": spec.identity})

        stub_tree = dependency_only_tree(spec.source)
        with scratch_workdir(stub_tree, prefix="deps") as workdir:
            run = self._toolchain.build_dependencies(workdir)
            if not run.ok:
                raise DependencyResolutionError(
                    "Dependency closure failed to resolve or compile.",
                    context={
                        "package": spec.identity.label,
                        "lock_hash": digest,
                        "command": " ".join(run.command),
                        "diagnostics": run.diagnostics,
                    },
                )
            outputs = snapshot_files(workdir / TARGET_DIR_NAME)

        artifact = DependencyCacheArtifact(
            key=key,
            lock_hash=digest,
            toolchain=toolchain,
            identity=spec.identity,
            dependencies=external_dependencies(packages),
            outputs=tuple(outputs),
        )
        self._store.publish_if_absent(CacheEntry(key=key, manifest=artifact.model_dump(mode="json"), files=outputs))
        self.stats.record_build()
        LOGGER.info("built dependency closure %s (%d packages)", key, len(artifact.dependencies))
        return artifact

    def restore(self, artifact: DependencyCacheArtifact) -> dict[str, bytes]:
        """Return the compiled files of ``artifact`` for a scratch ``target`` dir.

        Args:
            artifact: Artifact previously returned by :meth:`build_deps`.

        Returns:
            dict[str, bytes]: Copies of the stored files.

        Raises:
            DependencyResolutionError: If the store no longer holds the key.
        """

        entry = self._store.fetch(artifact.key)
        if entry is None:
            raise DependencyResolutionError(
                "Dependency artifact is not present in the cache store.",
                context={"key": artifact.key, "lock_hash": artifact.lock_hash},
            )
        return dict(entry.files)

    def requirements(self) -> tuple[ToolRequirement, ...]:
        """Return the tools the dependency build needs."""

        version = self._toolchain.identity.version
        return (
            ToolRequirement(name="cargo", version=version),
            ToolRequirement(name="rustc", version=version),
        )


__all__ = ["DependencyCacheBuilder"]
