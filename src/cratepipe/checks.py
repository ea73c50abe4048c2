# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Registry of the verification tasks run against a build input."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from functools import partial
from typing import Final

from .deps import DependencyCacheBuilder
from .errors import (
    CheckFailure,
    CompilationError,
    DependencyResolutionError,
    IncompleteChecksError,
    PipelineError,
    ToolchainError,
)
from .hashing import check_key
from .models import BuildInputSpec, CheckKind, CheckResult, DependencyCacheArtifact, ToolRequirement
from .package import PackageBuilder
from .scratch import scratch_workdir
from .store import CacheEntry, CacheStore
from .toolchain import Toolchain, ToolRun

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Check:
    """Declarative description of a registered check."""

    name: str
    kind: CheckKind
    requires_dependencies: bool
    tools: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True, slots=True)
class CheckContext:
    """Inputs handed to a check evaluator."""

    spec: BuildInputSpec
    deps: DependencyCacheArtifact | None
    toolchain: Toolchain
    packages: PackageBuilder
    dependencies: DependencyCacheBuilder


Evaluator = Callable[[Check, CheckContext], str]

BUILD_CHECK: Final[Check] = Check(
    name="build",
    kind=CheckKind.BUILD,
    requires_dependencies=True,
    tools=("cargo", "rustc"),
    description="Compile the package against the dependency cache.",
)
LINT_CHECK: Final[Check] = Check(
    name="clippy",
    kind=CheckKind.LINT,
    requires_dependencies=True,
    tools=("cargo", "clippy"),
    description="Static analysis with symbols resolved from the dependency cache.",
)
DOC_CHECK: Final[Check] = Check(
    name="doc",
    kind=CheckKind.DOC,
    requires_dependencies=True,
    tools=("cargo", "rustdoc"),
    description="Verify documentation generation succeeds.",
)
FORMAT_CHECK: Final[Check] = Check(
    name="fmt",
    kind=CheckKind.FORMAT,
    requires_dependencies=False,
    tools=("cargo", "rustfmt"),
    description="Verify the sources follow canonical formatting.",
)
DEFAULT_CHECKS: Final[tuple[Check, ...]] = (BUILD_CHECK, LINT_CHECK, DOC_CHECK, FORMAT_CHECK)


def _require(run: ToolRun, check: Check) -> str:
    if run.infrastructure_failure:
        raise ToolchainError(
            f"Check '{check.name}' could not run its tool.",
            hint=run.diagnostics or None,
            context={"check": check.name, "command": " ".join(run.command), "returncode": str(run.returncode)},
        )
    if not run.ok:
        raise CheckFailure(check.name, run.diagnostics)
    return run.diagnostics


def _required_deps(check: Check, context: CheckContext) -> DependencyCacheArtifact:
    if context.deps is None:
        raise DependencyResolutionError(
            f"Check '{check.name}' requires the dependency cache.",
            context={"check": check.name},
        )
    return context.deps


def _run_against_dependencies(check: Check, context: CheckContext, operation: Callable[..., ToolRun]) -> str:
    target_files = context.dependencies.restore(_required_deps(check, context))
    with scratch_workdir(context.spec.source, prefix=check.name, target_files=target_files) as workdir:
        return _require(operation(workdir), check)


def _evaluate_build(check: Check, context: CheckContext) -> str:
    try:
        context.packages.build_package(context.spec, _required_deps(check, context))
    except CompilationError as exc:
        raise CheckFailure(check.name, exc.diagnostics or str(exc)) from exc
    return ""


def _evaluate_lint(check: Check, context: CheckContext) -> str:
    return _run_against_dependencies(check, context, context.toolchain.clippy)


def _evaluate_doc(check: Check, context: CheckContext) -> str:
    return _run_against_dependencies(check, context, context.toolchain.doc)


def _evaluate_format(check: Check, context: CheckContext) -> str:
    with scratch_workdir(context.spec.source, prefix=check.name) as workdir:
        return _require(context.toolchain.fmt_check(workdir), check)


_EVALUATORS: Final[Mapping[CheckKind, Evaluator]] = {
    CheckKind.BUILD: _evaluate_build,
    CheckKind.LINT: _evaluate_lint,
    CheckKind.DOC: _evaluate_doc,
    CheckKind.FORMAT: _evaluate_format,
}


class CheckRegistry(Mapping[str, Check]):
    """Named, ordered set of checks sharing one build graph.

    ``CheckRegistry`` behaves like a read-only mapping of check name to
    :class:`Check`. Checks are independent: one failing never prevents the
    others from running. A failing check is reported as a
    :class:`CheckResult`; only a check that could not run at all raises.
    """

    def __init__(
        self,
        toolchain: Toolchain,
        packages: PackageBuilder,
        dependencies: DependencyCacheBuilder,
        *,
        store: CacheStore | None = None,
        checks: Iterable[Check] = (),
    ) -> None:
        """Create a registry.

        Args:
            toolchain: Toolchain running lint, doc and format checks.
            packages: Builder the build check delegates to.
            dependencies: Builder restoring dependency artifacts.
            store: Optional store used to reuse passing results.
            checks: Checks registered in order.
        """

        self._toolchain = toolchain
        self._packages = packages
        self._dependencies = dependencies
        self._store = store
        self._checks: dict[str, Check] = {}
        for check in checks:
            self.register(check)

    @classmethod
    def with_defaults(
        cls,
        toolchain: Toolchain,
        packages: PackageBuilder,
        dependencies: DependencyCacheBuilder,
        *,
        store: CacheStore | None = None,
        enabled: Sequence[str] | None = None,
    ) -> CheckRegistry:
        """Return a registry holding the default checks.

        Args:
            toolchain: Toolchain running lint, doc and format checks.
            packages: Builder the build check delegates to.
            dependencies: Builder restoring dependency artifacts.
            store: Optional store used to reuse passing results.
            enabled: Names to keep; ``None`` keeps every default check.

        Returns:
            CheckRegistry: Registry with the selected default checks.

        Raises:
            KeyError: If ``enabled`` names an unknown check.
        """

        known = {check.name: check for check in DEFAULT_CHECKS}
        if enabled is None:
            selected: Iterable[Check] = DEFAULT_CHECKS
        else:
            unknown = sorted(set(enabled) - set(known))
            if unknown:
                raise KeyError(f"Unknown checks: {', '.join(unknown)}")
            selected = (check for check in DEFAULT_CHECKS if check.name in enabled)
        return cls(toolchain, packages, dependencies, store=store, checks=selected)

    def register(self, check: Check) -> None:
        """Register ``check`` enforcing uniqueness by name.

        Raises:
            ValueError: If a check with the same name is already registered.
        """

        if check.name in self._checks:
            raise ValueError(f"Check '{check.name}' already registered")
        self._checks[check.name] = check

    def run(self, name: str, spec: BuildInputSpec, deps: DependencyCacheArtifact | None) -> CheckResult:
        """Run the check called ``name`` and report its outcome.

        Args:
            name: Registered check name.
            spec: Build inputs the check verifies.
            deps: Dependency artifact; may be ``None`` for checks that do not
                consume it.

        Returns:
            CheckResult: Pass/fail outcome with diagnostics.

        Raises:
            KeyError: If ``name`` is not registered.
            DependencyResolutionError: If the check needs the dependency cache
                and ``deps`` is ``None``.
            ToolchainError: If the check tool could not run.
        """

        check = self._checks[name]
        if check.requires_dependencies and deps is None:
            raise DependencyResolutionError(
                f"Check '{name}' requires the dependency cache.",
                context={"check": name, "package": spec.identity.label},
            )
        scoped_deps = deps if check.requires_dependencies else None
        key = check_key(
            name,
            spec.source.digest,
            scoped_deps.key if scoped_deps is not None else None,
            self._toolchain.identity.fingerprint,
        )
        if self._store is not None and (cached := self._store.fetch(key)) is not None:
            LOGGER.debug("check %s cache hit %s", name, key)
            return CheckResult.model_validate({**cached.manifest, "cached": True})

        context = CheckContext(
            spec=spec,
            deps=scoped_deps,
            toolchain=self._toolchain,
            packages=self._packages,
            dependencies=self._dependencies,
        )
        try:
            diagnostics = _EVALUATORS[check.kind](check, context)
        except CheckFailure as failure:
            LOGGER.info("check %s failed for %s", name, spec.identity.label)
            return CheckResult(name=name, kind=check.kind, passed=False, diagnostics=failure.diagnostics, key=key)

        result = CheckResult(name=name, kind=check.kind, passed=True, diagnostics=diagnostics, key=key)
        if self._store is not None:
            self._store.publish_if_absent(CacheEntry(key=key, manifest=result.model_dump(mode="json")))
        return result

    def run_all(
        self,
        spec: BuildInputSpec,
        deps: DependencyCacheArtifact | None,
        *,
        jobs: int = 1,
        names: Sequence[str] | None = None,
    ) -> tuple[CheckResult, ...]:
        """Run checks concurrently and return results in registration order.

        Args:
            spec: Build inputs every check verifies.
            deps: Dependency artifact shared read-only by the checks.
            jobs: Maximum number of checks running at once.
            names: Subset of checks to run; all when ``None``.

        Returns:
            tuple[CheckResult, ...]: One result per selected check.

        Raises:
            IncompleteChecksError: If a check could not run. Every other
                selected check still runs and its result is attached.
        """

        selected = [name for name in self._checks if names is None or name in names]
        runner = partial(self.run, spec=spec, deps=deps)
        results: dict[str, CheckResult] = {}
        errors: dict[str, PipelineError] = {}
        if jobs <= 1 or len(selected) <= 1:
            for name in selected:
                try:
                    results[name] = runner(name)
                except PipelineError as exc:
                    errors[name] = exc
        else:
            with ThreadPoolExecutor(max_workers=jobs) as executor:
                future_map = {executor.submit(runner, name): name for name in selected}
                for future in as_completed(future_map):
                    name = future_map[future]
                    try:
                        results[name] = future.result()
                    except PipelineError as exc:
                        errors[name] = exc
        ordered = tuple(results[name] for name in selected if name in results)
        if errors:
            blocked = {name: errors[name] for name in selected if name in errors}
            raise IncompleteChecksError(ordered, blocked) from next(iter(blocked.values()))
        return ordered

    def requirement_sets(self) -> dict[str, tuple[ToolRequirement, ...]]:
        """Return the tools each check declares, keyed by ``check:<name>``.

        Tools shipped with the toolchain are pinned to its version so the
        development environment matches what the checks run.
        """

        version = self._toolchain.identity.version
        return {
            f"check:{check.name}": tuple(ToolRequirement(name=tool, version=version) for tool in check.tools)
            for check in self._checks.values()
        }

    def __len__(self) -> int:
        return len(self._checks)

    def __iter__(self) -> Iterator[str]:
        return iter(self._checks)

    def __getitem__(self, name: str) -> Check:
        return self._checks[name]


__all__ = [
    "BUILD_CHECK",
    "Check",
    "CheckContext",
    "CheckRegistry",
    "DEFAULT_CHECKS",
    "DOC_CHECK",
    "FORMAT_CHECK",
    "LINT_CHECK",
]
