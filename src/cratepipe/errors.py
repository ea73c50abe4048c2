# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Error taxonomy shared by every pipeline component."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CheckResult


class PipelineError(Exception):
    """Base error carrying an optional hint and string context.

    The context mapping holds whatever the invoking collaborator needs to
    report the failure to a user: offending path, lock-file hash, package
    identity or tool diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        """Initialise the error with ``message`` and optional metadata.

        Args:
            message: Human readable summary of the failure.
            hint: Optional remediation hint displayed after the message.
            context: Additional key/value details describing the failure.
        """

        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context: dict[str, str] = {str(key): str(value) for key, value in (context or {}).items()}

    def __str__(self) -> str:
        """Return the message followed by the hint and context lines.

        Returns:
            str: Multi-line rendering suitable for terminal output.
        """

        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for key, value in self.context.items():
            if value:
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-compatible payload describing the error.

        Returns:
            dict[str, object]: Error type, message, hint and context.
        """

        payload: dict[str, object] = {
            "error": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class FilterError(PipelineError):
    """Raised when the repository root cannot be read as a source tree."""


class DependencyResolutionError(PipelineError):
    """Raised when the dependency closure cannot be resolved or compiled."""


class CompilationError(PipelineError):
    """Raised when application source fails to compile."""

    def __init__(
        self,
        message: str,
        *,
        diagnostics: str = "",
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        """Initialise the error with compiler ``diagnostics``.

        Args:
            message: Human readable summary of the failure.
            diagnostics: Raw compiler output explaining the failure.
            hint: Optional remediation hint.
            context: Additional key/value details describing the failure.
        """

        super().__init__(message, hint=hint, context=context)
        self.diagnostics = diagnostics


class CheckFailure(PipelineError):
    """Raised by a check evaluator when its assertion does not hold.

    The check registry converts this error into a failed ``CheckResult``; it
    never propagates past the registry.
    """

    def __init__(self, check: str, diagnostics: str) -> None:
        """Initialise the failure for ``check``.

        Args:
            check: Name of the failing check.
            diagnostics: Tool output describing the failure.
        """

        super().__init__(f"Check '{check}' failed", context={"check": check})
        self.check = check
        self.diagnostics = diagnostics


class CacheIntegrityError(PipelineError):
    """Raised when a stored cache entry does not match its key."""


class ToolchainError(PipelineError):
    """Raised when a tool could not run at all (missing executable, timeout).

    Unlike :class:`CompilationError` this says nothing about the source, so
    it is never remembered against an artifact key.
    """


class IncompleteChecksError(PipelineError):
    """Raised when some selected checks could not run.

    The checks that did run keep their results; the ones that could not are
    listed with the error that stopped them.
    """

    def __init__(
        self,
        results: Iterable[CheckResult],
        errors: Mapping[str, PipelineError],
    ) -> None:
        """Initialise the error with the partial outcome.

        Args:
            results: Results of the checks that ran, in registration order.
            errors: Fatal error per check that could not run.
        """

        self.results: tuple[CheckResult, ...] = tuple(results)
        self.errors: dict[str, PipelineError] = dict(errors)
        names = ", ".join(self.errors)
        super().__init__(
            f"Checks could not run: {names}.",
            context={"blocked": names, "completed": ", ".join(result.name for result in self.results)},
        )


class EnvironmentConflictError(PipelineError):
    """Raised when components pin the same tool to different versions."""


class GraphError(PipelineError):
    """Raised when the component graph is malformed."""


class ConfigError(PipelineError):
    """Raised when configuration input is invalid."""


__all__ = [
    "CacheIntegrityError",
    "CheckFailure",
    "CompilationError",
    "ConfigError",
    "DependencyResolutionError",
    "EnvironmentConflictError",
    "FilterError",
    "GraphError",
    "IncompleteChecksError",
    "PipelineError",
    "ToolchainError",
]
