# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Named pipeline entry points and the whole-graph run."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Final

from .checks import CheckRegistry
from .config import PipelineConfig, load_config
from .deps import DependencyCacheBuilder
from .environment import DevEnvironmentComposer
from .errors import ConfigError, DependencyResolutionError, IncompleteChecksError, PipelineError
from .filters import SourceFilter
from .graph import GraphExecutor, Node, NodeAction, PipelineGraph
from .models import (
    BuildInputSpec,
    CheckResult,
    DependencyCacheArtifact,
    DevEnvironmentSpec,
    PackageArtifact,
    SourceTree,
    ToolRequirement,
)
from .package import PackageBuilder
from .store import CacheStore, FileCacheStore
from .toolchain import CargoToolchain, Toolchain

LOGGER = logging.getLogger(__name__)

SOURCES_NODE: Final[str] = "sources"
DEPS_NODE: Final[str] = "deps"
PACKAGE_NODE: Final[str] = "package"
DEVSHELL_NODE: Final[str] = "devshell"
CHECK_NODE_PREFIX: Final[str] = "check:"


@dataclass(frozen=True, slots=True)
class PipelineReport:
    """Outcome of :meth:`Pipeline.run`.

    Attributes:
        source_digest: Digest of the filtered tree, ``None`` if filtering failed.
        dependencies: Dependency artifact when the closure built.
        package: Package artifact when the source compiled.
        checks: Results of the checks that ran, in registration order.
        environment: Composed development environment.
        errors: Fatal errors keyed by graph node.
        skipped: Nodes not run because an upstream node failed.
    """

    source_digest: str | None
    dependencies: DependencyCacheArtifact | None
    package: PackageArtifact | None
    checks: tuple[CheckResult, ...]
    environment: DevEnvironmentSpec | None
    errors: Mapping[str, PipelineError] = field(default_factory=dict)
    skipped: tuple[str, ...] = ()

    @property
    def failed_checks(self) -> tuple[CheckResult, ...]:
        """Return the checks that ran and did not pass."""

        return tuple(result for result in self.checks if not result.passed)

    @property
    def ok(self) -> bool:
        """Return ``True`` when every node ran and every check passed."""

        return not self.errors and not self.skipped and not self.failed_checks


class Pipeline:
    """Wire the components for one repository and expose named entry points.

    The filtered tree and the dependency artifact are computed once per
    instance; every entry point reuses them.
    """

    def __init__(
        self,
        root: Path,
        *,
        config: PipelineConfig | None = None,
        toolchain: Toolchain | None = None,
        store: CacheStore | None = None,
        source_filter: SourceFilter | None = None,
    ) -> None:
        """Create a pipeline rooted at ``root``.

        Args:
            root: Repository root.
            config: Configuration; loaded from ``root`` when omitted.
            toolchain: Toolchain; a :class:`CargoToolchain` when omitted.
            store: Cache store; a :class:`FileCacheStore` under the configured
                cache directory when omitted.
            source_filter: Filter; the default template-plus-Cargo filter when
                omitted.

        Raises:
            ConfigError: If the configuration is invalid or enables unknown
                checks.
        """

        self.root = Path(root)
        self.config = config if config is not None else load_config(self.root)
        cache_dir = self.config.resolve_cache_dir(self.root)
        self.toolchain: Toolchain = toolchain or CargoToolchain(
            channel=self.config.toolchain.channel,
            components=self.config.toolchain.components,
        )
        self.store: CacheStore = store if store is not None else FileCacheStore(cache_dir)
        self.source_filter = source_filter or SourceFilter.default(
            self.config.sources.include_patterns,
            excludes=_relative_excludes(self.root, cache_dir),
        )
        self.dependencies = DependencyCacheBuilder(self.toolchain, self.store)
        self.packages = PackageBuilder(self.toolchain, self.store, self.dependencies)
        try:
            self.checks = CheckRegistry.with_defaults(
                self.toolchain,
                self.packages,
                self.dependencies,
                store=self.store,
                enabled=self.config.checks.enabled,
            )
        except KeyError as exc:
            raise ConfigError(
                "Configuration enables unknown checks.",
                hint="Known checks: build, clippy, doc, fmt.",
                context={"enabled": ", ".join(self.config.checks.enabled or ()), "error": str(exc)},
            ) from exc
        self._spec_lock = threading.Lock()
        self._deps_lock = threading.Lock()
        self._spec: BuildInputSpec | None = None
        self._deps: DependencyCacheArtifact | None = None

    def filter_sources(self) -> SourceTree:
        """Return the filtered source tree of the repository.

        Raises:
            FilterError: If the repository cannot be read.
        """

        return self.input_spec().source

    def input_spec(self) -> BuildInputSpec:
        """Return the filtered tree tagged with the package identity.

        Raises:
            FilterError: If the repository cannot be read.
            ConfigError: If the package identity cannot be determined.
        """

        with self._spec_lock:
            if self._spec is None:
                tree = self.source_filter.filter(self.root)
                identity = self.config.resolve_identity(tree)
                self._spec = BuildInputSpec(source=tree, identity=identity)
                LOGGER.debug("input spec for %s has digest %s", identity.label, tree.digest)
            return self._spec

    def build_dependencies(self) -> DependencyCacheArtifact:
        """Build or reuse the dependency closure.

        Raises:
            DependencyResolutionError: If the closure cannot be resolved.
        """

        with self._deps_lock:
            if self._deps is None:
                self._deps = self.dependencies.build_deps(self.input_spec())
            return self._deps

    def build_package(self) -> PackageArtifact:
        """Build or reuse the package artifact.

        Raises:
            DependencyResolutionError: If the closure cannot be resolved.
            CompilationError: If the source fails to compile.
        """

        return self.packages.build_package(self.input_spec(), self.build_dependencies())

    def run_check(self, name: str) -> CheckResult:
        """Run the check called ``name``.

        The dependency closure is built only for checks that consume it.

        Raises:
            KeyError: If ``name`` is not registered.
            DependencyResolutionError: If the check needs the closure and it
                cannot be resolved.
        """

        check = self.checks[name]
        deps = self.build_dependencies() if check.requires_dependencies else None
        return self.checks.run(name, self.input_spec(), deps)

    def run_checks(self, names: Sequence[str] | None = None) -> tuple[CheckResult, ...]:
        """Run the selected checks concurrently.

        A dependency closure that cannot be resolved blocks only the checks
        that consume it; the remaining checks still run.

        Args:
            names: Checks to run; all registered checks when ``None``.

        Returns:
            tuple[CheckResult, ...]: Results in registration order.

        Raises:
            IncompleteChecksError: If some selected checks could not run. The
                results of the checks that did run are attached.
        """

        selected = [name for name in self.checks if names is None or name in names]
        deps: DependencyCacheArtifact | None = None
        blocked: dict[str, PipelineError] = {}
        if any(self.checks[name].requires_dependencies for name in selected):
            try:
                deps = self.build_dependencies()
            except DependencyResolutionError as exc:
                blocked = {name: exc for name in selected if self.checks[name].requires_dependencies}
        runnable = [name for name in selected if name not in blocked]
        try:
            results = self.checks.run_all(self.input_spec(), deps, jobs=self.config.execution.jobs, names=runnable)
        except IncompleteChecksError as exc:
            errors = {**blocked, **exc.errors}
            ordered = {name: errors[name] for name in selected if name in errors}
            raise IncompleteChecksError(exc.results, ordered) from exc
        if blocked:
            raise IncompleteChecksError(results, blocked) from next(iter(blocked.values()))
        return results

    def requirement_sets(self) -> dict[str, tuple[ToolRequirement, ...]]:
        """Return the tools declared by the package builder and each check."""

        return {PACKAGE_NODE: self.packages.requirements(), **self.checks.requirement_sets()}

    def compose_environment(self) -> DevEnvironmentSpec:
        """Compose the development environment from every declared tool.

        Raises:
            EnvironmentConflictError: If declared tool versions disagree.
        """

        composer = DevEnvironmentComposer(
            self.toolchain.identity,
            extra_tools=self.config.environment.requirements(),
        )
        return composer.compose(self.requirement_sets())

    def build_graph(self) -> PipelineGraph:
        """Return the component graph for this pipeline.

        Returns:
            PipelineGraph: Nodes for sources, dependencies, the package, one
            node per check and the development environment.
        """

        nodes = [
            Node(SOURCES_NODE, lambda _inputs: self.input_spec()),
            Node(DEPS_NODE, lambda _inputs: self.build_dependencies(), (SOURCES_NODE,)),
            Node(PACKAGE_NODE, lambda _inputs: self.build_package(), (SOURCES_NODE, DEPS_NODE)),
        ]
        for name, check in self.checks.items():
            upstream = (SOURCES_NODE, DEPS_NODE) if check.requires_dependencies else (SOURCES_NODE,)
            nodes.append(Node(f"{CHECK_NODE_PREFIX}{name}", self._check_action(name), upstream))
        nodes.append(Node(DEVSHELL_NODE, lambda _inputs: self.compose_environment()))
        return PipelineGraph(nodes)

    def _check_action(self, name: str) -> NodeAction:
        def action(_inputs: Mapping[str, object]) -> CheckResult:
            return self.run_check(name)

        return action

    def run(self, *, jobs: int | None = None) -> PipelineReport:
        """Execute the full component graph.

        Fatal errors are isolated to the nodes downstream of the failing
        component; they are reported rather than raised.

        Args:
            jobs: Maximum concurrent nodes; the configured value when ``None``.

        Returns:
            PipelineReport: Artifacts, check results, errors and skipped nodes.
        """

        graph = self.build_graph()
        outcome = GraphExecutor(jobs or self.config.execution.jobs).execute(graph)
        results = outcome.results
        spec = results.get(SOURCES_NODE)
        deps = results.get(DEPS_NODE)
        package = results.get(PACKAGE_NODE)
        environment = results.get(DEVSHELL_NODE)
        checks = tuple(
            result
            for name in self.checks
            if isinstance(result := results.get(f"{CHECK_NODE_PREFIX}{name}"), CheckResult)
        )
        for node, error in outcome.errors.items():
            LOGGER.info("%s failed: %s", node, error.message)
        return PipelineReport(
            source_digest=spec.source.digest if isinstance(spec, BuildInputSpec) else None,
            dependencies=deps if isinstance(deps, DependencyCacheArtifact) else None,
            package=package if isinstance(package, PackageArtifact) else None,
            checks=checks,
            environment=environment if isinstance(environment, DevEnvironmentSpec) else None,
            errors=MappingProxyType(dict(outcome.errors)),
            skipped=tuple(outcome.skipped),
        )


def _relative_excludes(root: Path, cache_dir: Path) -> tuple[str, ...]:
    try:
        relative = cache_dir.resolve().relative_to(root.resolve())
    except ValueError:
        return ()
    return (relative.as_posix(),) if relative.parts else ()


__all__ = ["Pipeline", "PipelineReport"]
