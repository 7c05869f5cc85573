"""Shared type definitions for packs_lifecycle.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from packs_lifecycle.errors import EXIT_SUCCESS

if TYPE_CHECKING:
    from packs_lifecycle.errors import LifecycleError


class OutcomeStatus(str, Enum):
    """Outcome of an analyze or export invocation."""

    OK = "ok"
    SKIPPED = "skipped"
    FATAL = "fatal"


@dataclass(frozen=True)
class LayerRef:
    """Address of a layer in the launch directory: ``<buildpack_id>/<name>``."""

    buildpack_id: str
    name: str

    def __str__(self) -> str:
        return f"{self.buildpack_id}/{self.name}"


@dataclass
class Outcome:
    """Result of a lifecycle operation.

    A skipped outcome is a success with a warning attached (for example a
    prior image that could not be accessed). A fatal outcome carries the
    error code and the exit code the boundary should use.
    """

    status: OutcomeStatus
    message: str
    code: str | None = None
    exit_code: int = EXIT_SUCCESS
    details: dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status is not OutcomeStatus.FATAL

    @classmethod
    def ok(cls, message: str = "ok", **details: object) -> Outcome:
        return cls(status=OutcomeStatus.OK, message=message, details=dict(details))

    @classmethod
    def skipped(cls, reason: str, code: str | None = None) -> Outcome:
        return cls(status=OutcomeStatus.SKIPPED, message=reason, code=code)

    @classmethod
    def fatal(cls, error: LifecycleError) -> Outcome:
        details: dict[str, object] = {}
        if error.operation:
            details["operation"] = error.operation
        if error.__cause__ is not None:
            details["cause"] = repr(error.__cause__)
        return cls(
            status=OutcomeStatus.FATAL,
            message=str(error),
            code=error.code,
            exit_code=error.exit_code,
            details=details,
        )


__all__ = ["LayerRef", "Outcome", "OutcomeStatus"]
