"""Citation formatter."""

from __future__ import annotations

import logging
import re
from string import Template
from typing import TYPE_CHECKING

from texmd.config import PipelineConfig
from texmd.phases._scan import Edit, apply_edits, is_escaped, read_group, skip_spaces
from texmd.phases.base import BasePhase, DiagnosticKind

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext

logger = logging.getLogger(__name__)

CITATION_COMMANDS = ("cite", "citep", "citet", "citeauthor", "citeyear", "citetitle", "fullcite")

_CITE_RE = re.compile(
    r"\\(?P<cmd>" + "|".join(sorted(CITATION_COMMANDS, key=len, reverse=True)) + r")\*?(?![A-Za-z])"
)
_KEY_RE = re.compile(r"^[A-Za-z0-9_:-]+$")


def format_keys(cmd: str, keys: str, ctx: ConversionContext, position: int = 0) -> str:
    """Apply the command's template to each comma-separated key."""
    templates = ctx.config.citation_templates
    template = Template(templates.get(cmd, templates.get("cite", "[cite: $key]")))
    parts: list[str] = []
    for key in (k.strip() for k in keys.split(",")):
        if not key:
            ctx.report(DiagnosticKind.CITATION_KEY_ERROR, f"Empty key in \\{cmd}", position)
            continue
        if not _KEY_RE.match(key):
            ctx.report(DiagnosticKind.CITATION_KEY_ERROR, f"Malformed citation key {key!r}", position)
        parts.append(template.safe_substitute(key=key))
    return ", ".join(parts)


def format_citations(text: str, ctx: ConversionContext) -> str:
    """Rewrite every ``\\cite``-style command.

    With a single optional argument it is the post-note; with two the
    first is the pre-note. Pre-notes lead the output, post-notes follow
    it in parentheses.
    """
    edits: list[Edit] = []
    cursor = 0
    for match in _CITE_RE.finditer(text):
        if match.start() < cursor or is_escaped(text, match.start()):
            continue
        pos = match.end()
        notes: list[str] = []
        while len(notes) < 2:
            group = read_group(text, skip_spaces(text, pos), "[", "]")
            if group is None:
                break
            notes.append(group[0].strip())
            pos = group[1]
        keys = read_group(text, skip_spaces(text, pos))
        if keys is None:
            logger.debug("\\%s without a key group at %d", match.group("cmd"), match.start())
            continue

        prenote, postnote = ("", notes[0]) if len(notes) == 1 else (notes + ["", ""])[:2]
        rendered = format_keys(match.group("cmd"), keys[0], ctx, match.start())
        if prenote:
            rendered = f"{prenote} {rendered}"
        if postnote:
            rendered = f"{rendered} ({postnote})"
        edits.append(Edit(match.start(), keys[1], rendered))
        cursor = keys[1]
    return apply_edits(text, edits)


class CitationPhase(BasePhase):
    name = "citations"

    def enabled(self, config: PipelineConfig) -> bool:
        return config.convert_citations

    def apply(self, text: str, ctx: ConversionContext) -> str:
        return format_citations(text, ctx)
