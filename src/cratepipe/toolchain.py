# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Compiler toolchain protocol and its Cargo implementation."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from subprocess import CompletedProcess
from typing import Final, Protocol, runtime_checkable

from packaging.version import InvalidVersion, Version

from .models import ToolchainIdentity
from .process import TIMEOUT_RETURNCODE, CommandOptions, run_command

LOGGER = logging.getLogger(__name__)

TARGET_DIR_NAME: Final[str] = "target"
RELEASE_PROFILE: Final[str] = "release"
MISSING_EXECUTABLE_RETURNCODE: Final[int] = 127

Runner = Callable[..., CompletedProcess[str]]


@dataclass(frozen=True, slots=True)
class ToolRun:
    """Captured result of a single toolchain invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` when the command exited with status ``0``."""

        return self.returncode == 0

    @property
    def diagnostics(self) -> str:
        """Return the combined output, stderr first, stripped of padding."""

        return "\n".join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)

    @property
    def infrastructure_failure(self) -> bool:
        """Return ``True`` when the tool never ran to completion.

        A missing executable or a timeout says nothing about the sources
        being checked.
        """

        return self.returncode in (MISSING_EXECUTABLE_RETURNCODE, TIMEOUT_RETURNCODE)


@runtime_checkable
class Toolchain(Protocol):
    """Operations the pipeline needs from a compiler toolchain.

    Every operation runs inside a private scratch directory holding a
    materialised source tree; compiled output lands in ``workdir/target``.
    """

    @property
    def identity(self) -> ToolchainIdentity:
        """Return the identity used in cache keys."""
        ...

    def build_dependencies(self, workdir: Path) -> ToolRun:
        """Compile the dependency closure of a stubbed tree."""
        ...

    def build_package(self, workdir: Path) -> ToolRun:
        """Compile the full package."""
        ...

    def clippy(self, workdir: Path) -> ToolRun:
        """Run static analysis over the package."""
        ...

    def doc(self, workdir: Path) -> ToolRun:
        """Generate package documentation."""
        ...

    def fmt_check(self, workdir: Path) -> ToolRun:
        """Verify canonical formatting without rewriting files."""
        ...

    def package_outputs(self, workdir: Path) -> dict[str, bytes]:
        """Return installable build outputs keyed by ``target``-relative path."""
        ...


class VersionResolver:
    """Capture and normalise tool versions using PEP 440 semantics."""

    VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+)+)")

    def normalize(self, raw: str | None) -> str | None:
        """Return the first dotted version found in ``raw`` when valid."""

        if not raw:
            return None
        match = self.VERSION_PATTERN.search(raw)
        candidate = match.group(1) if match else raw.strip()
        try:
            Version(candidate)
        except InvalidVersion:
            return None
        return candidate


class CargoToolchain:
    """Drive ``cargo`` for dependency builds, package builds and checks."""

    def __init__(
        self,
        *,
        channel: str = "stable",
        components: Sequence[str] = (),
        runner: Runner = run_command,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        """Create a toolchain adapter.

        Args:
            channel: Release channel recorded in the toolchain identity.
            components: Extra rustup components (``rust-src`` and the like).
            runner: Callable executing commands, ``run_command`` by default.
            env: Extra environment variables for every invocation.
            timeout: Optional per-command timeout in seconds.
        """

        self._channel = channel
        self._components = tuple(components)
        self._runner = runner
        self._env = dict(env or {})
        self._timeout = timeout
        self._versions = VersionResolver()
        self._identity: ToolchainIdentity | None = None
        self._lock = threading.Lock()

    @property
    def identity(self) -> ToolchainIdentity:
        """Return the toolchain identity, querying ``rustc`` once."""

        with self._lock:
            if self._identity is None:
                version_run = self._run(["rustc", "--version"], cwd=None)
                version = self._versions.normalize(version_run.stdout) if version_run.ok else None
                if version is None:
                    LOGGER.warning("unable to determine rustc version: %s", version_run.diagnostics or "no output")
                self._identity = ToolchainIdentity(
                    name="rust",
                    channel=self._channel,
                    version=version,
                    components=self._components,
                )
            return self._identity

    def build_dependencies(self, workdir: Path) -> ToolRun:
        check = self._cargo(workdir, "check", "--release", "--locked", "--all-targets")
        if not check.ok:
            return check
        return self._cargo(workdir, "build", "--release", "--locked")

    def build_package(self, workdir: Path) -> ToolRun:
        return self._cargo(workdir, "build", "--release", "--locked")

    def clippy(self, workdir: Path) -> ToolRun:
        return self._cargo(workdir, "clippy", "--release", "--locked", "--all-targets", "--", "--deny", "warnings")

    def doc(self, workdir: Path) -> ToolRun:
        return self._cargo(workdir, "doc", "--release", "--locked", "--no-deps")

    def fmt_check(self, workdir: Path) -> ToolRun:
        return self._cargo(workdir, "fmt", "--", "--check")

    def package_outputs(self, workdir: Path) -> dict[str, bytes]:
        """Return the top-level files of the release profile directory.

        Intermediate directories (``deps``, ``build``, ``incremental``) and
        dep-info files are left out; they belong to the dependency artifact.

        Args:
            workdir: Scratch directory the package was built in.

        Returns:
            dict[str, bytes]: Output content keyed by ``target``-relative path.
        """

        profile_dir = workdir / TARGET_DIR_NAME / RELEASE_PROFILE
        if not profile_dir.is_dir():
            return {}
        outputs: dict[str, bytes] = {}
        for candidate in sorted(profile_dir.iterdir()):
            if not candidate.is_file() or candidate.name.startswith(".") or candidate.suffix == ".d":
                continue
            outputs[f"{RELEASE_PROFILE}/{candidate.name}"] = candidate.read_bytes()
        return outputs

    def _cargo(self, workdir: Path, *args: str) -> ToolRun:
        env = {
            "CARGO_TARGET_DIR": str(workdir / TARGET_DIR_NAME),
            "CARGO_TERM_COLOR": "never",
            **self._env,
        }
        return self._run(["cargo", *args], cwd=workdir, env=env)

    def _run(self, command: list[str], *, cwd: Path | None, env: Mapping[str, str] | None = None) -> ToolRun:
        options = CommandOptions(cwd=cwd, timeout=self._timeout)
        if env:
            options = options.with_env(env)
        LOGGER.debug("running %s in %s", " ".join(command), cwd)
        try:
            completed = self._runner(command, options=options)
        except FileNotFoundError as exc:
            return ToolRun(command=tuple(command), returncode=MISSING_EXECUTABLE_RETURNCODE, stderr=str(exc))
        return ToolRun(
            command=tuple(command),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


__all__ = [
    "CargoToolchain",
    "MISSING_EXECUTABLE_RETURNCODE",
    "RELEASE_PROFILE",
    "TARGET_DIR_NAME",
    "ToolRun",
    "Toolchain",
    "VersionResolver",
]
