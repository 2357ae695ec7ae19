"""Pipeline orchestrator — runs the phases in order over one document.

Usage:
    from texmd.pipeline import transform
    text, diagnostics = transform(source)

Every call builds its own ConversionContext, so calls may overlap on
different threads. A phase that raises is logged, reported as a
PhaseFailure diagnostic and skipped: the next phase receives the text
the failed phase was given.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from texmd.config import Direction, PipelineConfig
from texmd.phases.base import BasePhase, Diagnostic, DiagnosticKind
from texmd.phases.citations import CitationPhase
from texmd.phases.cleanup import CleanupPhase
from texmd.phases.delimiters import DelimiterPhase
from texmd.phases.environments import Converter, EnvironmentPhase
from texmd.phases.macros import MacroPhase
from texmd.phases.references import ReferencePhase
from texmd.phases.theorems import CalloutPhase
from texmd.runtime.context import ConversionContext

logger = logging.getLogger(__name__)

FORWARD_PHASES: tuple[BasePhase, ...] = (
    MacroPhase(),
    EnvironmentPhase(),
    ReferencePhase(),
    CitationPhase(),
    DelimiterPhase(),
    CleanupPhase(),
)

REVERSE_PHASES: tuple[BasePhase, ...] = (
    MacroPhase(),
    CalloutPhase(),
    DelimiterPhase(),
)

Result = tuple[str, list[Diagnostic]]


def phases_for(
    direction: Direction,
    converters: dict[str, Converter] | None = None,
) -> tuple[BasePhase, ...]:
    """Phase sequence for ``direction``, with a custom converter registry if given."""
    if direction is Direction.REVERSE:
        return REVERSE_PHASES
    if converters is None:
        return FORWARD_PHASES
    return tuple(
        EnvironmentPhase(converters) if isinstance(phase, EnvironmentPhase) else phase
        for phase in FORWARD_PHASES
    )


def _run_phase(phase: BasePhase, text: str, ctx: ConversionContext) -> str:
    """Run one phase, containing any exception it raises."""
    try:
        return phase.apply(text, ctx)
    except Exception as exc:
        logger.exception("Phase %s failed; passing its input through", phase.name)
        ctx.report(
            DiagnosticKind.PHASE_FAILURE,
            f"{phase.name}: {type(exc).__name__}: {exc}",
        )
        return text


def transform(
    text: str,
    config: PipelineConfig | None = None,
    direction: Direction = Direction.FORWARD,
    converters: dict[str, Converter] | None = None,
) -> Result:
    """Convert one document. Never raises for document content."""
    ctx = ConversionContext(config=config or PipelineConfig(), direction=direction)
    ctx.theorems.reset()

    result = text
    for phase in phases_for(direction, converters):
        if not phase.enabled(ctx.config):
            logger.debug("Phase %s disabled", phase.name)
            continue
        result = _run_phase(phase, result, ctx)

    logger.debug(
        "transform direction=%s chars_in=%d chars_out=%d diagnostics=%d",
        direction.value, len(text), len(result), len(ctx.diagnostics),
    )
    return result, ctx.diagnostics


def transform_many(
    texts: Sequence[str],
    config: PipelineConfig | None = None,
    direction: Direction = Direction.FORWARD,
    max_workers: int = 4,
) -> list[Result]:
    """Convert several documents on a thread pool.

    Results come back in the same order as ``texts``.
    """
    if len(texts) <= 1:
        return [transform(t, config, direction) for t in texts]

    results: dict[int, Result] = {}
    with ThreadPoolExecutor(
        max_workers=max(1, min(max_workers, len(texts))),
        thread_name_prefix="texmd-transform",
    ) as pool:
        future_to_index = {
            pool.submit(transform, t, config, direction): i
            for i, t in enumerate(texts)
        }
        for future in as_completed(future_to_index):
            index = future_to_index[future]
            try:
                results[index] = future.result()
            except Exception as exc:
                logger.exception("Document %d raised during transform", index)
                results[index] = (
                    texts[index],
                    [Diagnostic(DiagnosticKind.PHASE_FAILURE, str(exc))],
                )

    return [results[i] for i in range(len(texts))]
