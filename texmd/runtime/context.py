"""Per-run conversion context.

All counters and tables of one ``transform`` call live here: macro table,
label table, theorem state machine, equation counter and the collected
diagnostics. A context is built at the start of a call and dropped at the
end, so concurrent or sequential runs never see each other's numbering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from texmd.config import Direction, PipelineConfig
from texmd.phases.base import Diagnostic, DiagnosticKind
from texmd.phases.theorems import TheoremStateMachine

if TYPE_CHECKING:
    from texmd.phases.macros import MacroDefinition
    from texmd.phases.references import LabelRecord

logger = logging.getLogger(__name__)


@dataclass
class ConversionContext:
    """State owned exclusively by one pipeline invocation."""

    config: PipelineConfig = field(default_factory=PipelineConfig)
    direction: Direction = Direction.FORWARD
    diagnostics: list[Diagnostic] = field(default_factory=list)
    macros: dict[str, MacroDefinition] = field(default_factory=dict)
    labels: dict[str, LabelRecord] = field(default_factory=dict)
    theorems: TheoremStateMachine = field(default_factory=TheoremStateMachine)
    equation_counter: int = 0

    def report(self, kind: DiagnosticKind, message: str, position: int = 0) -> None:
        """Record a diagnostic and log it."""
        self.diagnostics.append(Diagnostic(kind, message, position))
        logger.warning("%s at %d: %s", kind.value, position, message)

    def count(self, kind: DiagnosticKind) -> int:
        return sum(1 for d in self.diagnostics if d.kind is kind)

    def next_equation_number(self) -> int:
        self.equation_counter += 1
        return self.equation_counter
