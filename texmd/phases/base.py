"""Base phase abstraction and diagnostic records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from texmd.config import PipelineConfig

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext


class DiagnosticKind(str, Enum):
    """Recoverable problems reported during a conversion."""

    DELIMITER_MISMATCH = "DelimiterMismatch"
    ENVIRONMENT_MISMATCH = "EnvironmentMismatch"
    UNMATCHED_ENVIRONMENT = "UnmatchedEnvironment"
    INVALID_NESTING = "InvalidNesting"
    UNKNOWN_ENVIRONMENT = "UnknownEnvironment"
    INVALID_MACRO_NAME = "InvalidMacroName"
    ARITY_MISMATCH = "ArityMismatch"
    DUPLICATE_LABEL = "DuplicateLabel"
    UNDEFINED_REFERENCE = "UndefinedReference"
    CITATION_KEY_ERROR = "CitationKeyError"
    PHASE_FAILURE = "PhaseFailure"


@dataclass(frozen=True)
class Diagnostic:
    """A structured, non-fatal report with an approximate offset."""

    kind: DiagnosticKind
    message: str
    position: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "position": self.position,
        }


class BasePhase(ABC):
    """Abstract base class for pipeline phases.

    A phase consumes the full output string of the previous phase and
    returns a new string. Per-run state lives on the context, never on
    the phase object, so one instance may serve concurrent runs.
    """

    name: str = "base"

    @abstractmethod
    def apply(self, text: str, ctx: ConversionContext) -> str:
        """Transform ``text``, reporting problems on ``ctx``."""
        ...

    def enabled(self, config: PipelineConfig) -> bool:
        """Whether the phase runs under ``config``."""
        return True
