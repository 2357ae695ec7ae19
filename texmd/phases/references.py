"""Label & reference resolver.

Pass 1 numbers every ``\\label`` by category, pass 2 rewrites the
reference commands, and label removal (if requested) runs last so the
numbering always reflects the original label set.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from string import Template
from typing import TYPE_CHECKING

from texmd.config import ReferenceMode
from texmd.phases._scan import Edit, apply_edits, is_escaped
from texmd.phases.base import BasePhase, DiagnosticKind

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext

logger = logging.getLogger(__name__)

LABEL_WINDOW = 160
UNRESOLVED = "(?)"
UNKNOWN_PAGE = "?"

CATEGORIES = ("equation", "figure", "table", "section")

PLACEHOLDER_TEMPLATES: dict[str, str] = {
    "ref": "[$label]",
    "eqref": "(Equation $label)",
    "pageref": "page $label",
    "nameref": "$label",
    "autoref": "[$label]",
    "vref": "[$label]",
}

_LABEL_RE = re.compile(r"\\label\s*\{([^{}]*)\}")
_LABEL_REMOVAL_RE = re.compile(r"\\label\s*\{[^{}]*\}[ \t]*")
_REFERENCE_RE = re.compile(
    r"\\(?P<cmd>ref|eqref|pageref|nameref|autoref|vref)\*?\s*\{(?P<label>[^{}]*)\}"
)
_MARKER_RE = re.compile(
    r"\\begin\s*\{(?P<float>figure|table)\*?\}"
    r"|\\end\s*\{(?:figure|table)\*?\}"
    r"|\\(?:chapter|section|subsection|subsubsection)\*?\s*(?:\[[^\]]*\])?\s*\{(?P<heading>[^{}]*)\}"
    r"|\$\$|\\\["
    r"|\\begin\s*\{(?:equation|align|gather|multline)\*?\}"
    # callout head plus the numbered lead-in of its first body line
    r"|^>[ \t]?\[!(?P<callout>[A-Za-z]+)\][+-]?[ \t]*(?P<title>[^\n]*)\n"
    r">[ \t]?(?:[A-Z][\w ]*? (?P<lead>\d+(?:\.\d+)*)\.)?",
    re.MULTILINE,
)


@dataclass(frozen=True)
class LabelRecord:
    """A numbered label and the construct it names."""

    label: str
    number: int | str
    category: str
    name: str | None = None


def _nearest_marker(text: str, pos: int) -> re.Match[str] | None:
    window_start = max(0, pos - LABEL_WINDOW)
    nearest: re.Match[str] | None = None
    for match in _MARKER_RE.finditer(text, window_start, pos):
        nearest = match
    return nearest


def _category(nearest: re.Match[str] | None) -> tuple[str, str | None]:
    if nearest is None:
        return "equation", None
    if nearest.group("float"):
        return nearest.group("float"), None
    if nearest.group("heading") is not None:
        return "section", nearest.group("heading").strip()
    if nearest.group("callout"):
        return nearest.group("callout"), nearest.group("title").strip() or None
    return "equation", None


def classify(text: str, pos: int) -> tuple[str, str | None]:
    """Category and display name of a label at ``pos``.

    The nearest construct marker in the preceding window decides; with
    none in range the label names an equation. A label inside a theorem
    callout takes the callout's name as its category.
    """
    return _category(_nearest_marker(text, pos))


def collect_labels(text: str, ctx: ConversionContext) -> dict[str, LabelRecord]:
    """Pass 1: number every label, per category, in document order.

    Theorem labels reuse the number printed in the callout lead-in when
    there is one.
    """
    base = ctx.config.label_counter_base
    counters = dict.fromkeys(CATEGORIES, base - 1)
    labels: dict[str, LabelRecord] = {}

    for match in _LABEL_RE.finditer(text):
        if is_escaped(text, match.start()):
            continue
        label = match.group(1).strip()
        nearest = _nearest_marker(text, match.start())
        category, name = _category(nearest)
        counters[category] = counters.get(category, base - 1) + 1
        number: int | str = counters[category]
        if nearest is not None and nearest.group("lead"):
            number = nearest.group("lead")
        if label in labels:
            ctx.report(
                DiagnosticKind.DUPLICATE_LABEL,
                f"Label {label!r} defined more than once; the later one wins",
                match.start(),
            )
        labels[label] = LabelRecord(label, number, category, name)

    logger.debug("Collected %d label(s)", len(labels))
    return labels


def _resolve(cmd: str, label: str, ctx: ConversionContext, position: int) -> str:
    record = ctx.labels.get(label)
    if record is None:
        ctx.report(DiagnosticKind.UNDEFINED_REFERENCE, f"\\{cmd}{{{label}}} has no label", position)
        return UNRESOLVED
    if cmd == "nameref" and not record.name:
        ctx.report(
            DiagnosticKind.UNDEFINED_REFERENCE,
            f"\\nameref{{{label}}} points at a label without a name",
            position,
        )
        return UNRESOLVED
    template = ctx.config.reference_templates.get(cmd, "$number")
    return Template(template).safe_substitute(
        number=record.number,
        label=record.label,
        type=record.category.capitalize(),
        name=record.name or "",
        page=UNKNOWN_PAGE,
    )


def rewrite_references(text: str, ctx: ConversionContext) -> str:
    """Pass 2: replace reference commands according to the reference mode."""
    mode = ctx.config.reference_mode
    if mode is ReferenceMode.IGNORE:
        return text

    edits: list[Edit] = []
    for match in _REFERENCE_RE.finditer(text):
        if is_escaped(text, match.start()):
            continue
        cmd = match.group("cmd")
        label = match.group("label").strip()
        if mode is ReferenceMode.PLACEHOLDER:
            replacement = Template(PLACEHOLDER_TEMPLATES[cmd]).safe_substitute(label=label)
        else:
            replacement = _resolve(cmd, label, ctx, match.start())
        edits.append(Edit(match.start(), match.end(), replacement))
    return apply_edits(text, edits)


def remove_labels(text: str) -> str:
    return _LABEL_REMOVAL_RE.sub("", text)


class ReferencePhase(BasePhase):
    """Label numbering, reference substitution and optional label removal."""

    name = "references"

    def apply(self, text: str, ctx: ConversionContext) -> str:
        if ctx.config.reference_mode is ReferenceMode.RESOLVE:
            ctx.labels.update(collect_labels(text, ctx))
        text = rewrite_references(text, ctx)
        if ctx.config.remove_labels:
            text = remove_labels(text)
        return text
