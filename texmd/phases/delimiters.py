"""Delimiter normalizer — rewrites math delimiter pairs between dialects.

Forward:  \\[ ... \\]  and  \\( ... \\)  become  $$ ... $$  and  $ ... $.
Reverse:  $$ ... $$  and  $ ... $  become  \\[ ... \\]  and  \\( ... \\).

A pair is rewritten only when both ends are found in order. An opener
with no closer, a stray closer, or two interleaved kinds are left
exactly as written and reported as DelimiterMismatch.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from texmd.config import Direction
from texmd.phases._scan import Edit, apply_edits, line_prefix, strip_prefix
from texmd.phases.base import BasePhase, DiagnosticKind

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelimiterRule:
    """One source delimiter pair and its target form."""

    kind: str  # "display" | "inline"
    opener: str
    closer: str
    target_open: str
    target_close: str


FORWARD_RULES: tuple[DelimiterRule, ...] = (
    DelimiterRule("display", "\\[", "\\]", "$$", "$$"),
    DelimiterRule("display", "\\begin{displaymath}", "\\end{displaymath}", "$$", "$$"),
    DelimiterRule("inline", "\\(", "\\)", "$", "$"),
    DelimiterRule("inline", "\\begin{math}", "\\end{math}", "$", "$"),
)

REVERSE_RULES: tuple[DelimiterRule, ...] = (
    DelimiterRule("display", "$$", "$$", "\\[", "\\]"),
    DelimiterRule("inline", "$", "$", "\\(", "\\)"),
)

# Line breaks and escaped dollars are never delimiters.
_OPAQUE_TOKENS = ("\\\\", "\\$")


def display_block(
    content: str,
    prefix: str = "",
    compact: bool = False,
    open_marker: str = "$$",
    close_marker: str = "$$",
) -> str:
    """Render display math canonically.

    Content is trimmed and blank lines are dropped. ``compact`` keeps
    single-line content on one line. ``prefix`` is repeated on every
    emitted line after the first, so blocks inside callouts stay inside.
    """
    lines = strip_prefix(content.split("\n"), prefix)
    lines = [line.strip() for line in lines if line.strip()]
    if compact and len(lines) <= 1:
        body = lines[0] if lines else ""
        return f"{open_marker}{body}{close_marker}"
    out = [open_marker]
    out.extend(prefix + line for line in lines)
    out.append(prefix + close_marker)
    return "\n".join(out)


def _token_pattern(rules: tuple[DelimiterRule, ...]) -> re.Pattern[str]:
    tokens = set(_OPAQUE_TOKENS)
    for rule in rules:
        tokens.add(rule.opener)
        tokens.add(rule.closer)
    ordered = sorted(tokens, key=len, reverse=True)
    return re.compile("|".join(re.escape(t) for t in ordered))


def _render(rule: DelimiterRule, text: str, open_start: int, open_end: int, close_start: int) -> str:
    content = text[open_end:close_start]
    if rule.kind == "inline":
        return f"{rule.target_open}{content.strip()}{rule.target_close}"
    prefix = line_prefix(text, open_start)
    return display_block(
        content,
        prefix=prefix,
        compact="\n" not in content.strip(),
        open_marker=rule.target_open,
        close_marker=rule.target_close,
    )


def normalize_delimiters(
    text: str,
    ctx: ConversionContext,
    rules: tuple[DelimiterRule, ...] = FORWARD_RULES,
) -> str:
    """Rewrite every well-formed delimiter pair described by ``rules``."""
    pattern = _token_pattern(rules)
    openers = {rule.opener: rule for rule in rules}
    closers = {rule.closer for rule in rules}

    edits: list[Edit] = []
    open_rule: DelimiterRule | None = None
    open_match: re.Match[str] | None = None

    for match in pattern.finditer(text):
        token = match.group(0)
        if token in _OPAQUE_TOKENS:
            continue

        if open_rule is not None and open_match is not None:
            if token == open_rule.closer:
                edits.append(Edit(
                    open_match.start(),
                    match.end(),
                    _render(open_rule, text, open_match.start(), open_match.end(), match.start()),
                ))
                open_rule = None
                open_match = None
                continue
            ctx.report(
                DiagnosticKind.DELIMITER_MISMATCH,
                f"{open_rule.opener} interrupted by {token} before {open_rule.closer}",
                open_match.start(),
            )
            open_rule = None
            open_match = None

        rule = openers.get(token)
        if rule is not None:
            open_rule = rule
            open_match = match
        elif token in closers:
            ctx.report(
                DiagnosticKind.DELIMITER_MISMATCH,
                f"Unmatched closing delimiter {token}",
                match.start(),
            )

    if open_rule is not None and open_match is not None:
        ctx.report(
            DiagnosticKind.DELIMITER_MISMATCH,
            f"Unterminated {open_rule.opener} (missing {open_rule.closer})",
            open_match.start(),
        )

    logger.debug("Rewrote %d delimiter pair(s)", len(edits))
    return apply_edits(text, edits)


class DelimiterPhase(BasePhase):
    """Math delimiter rewriting for the run's direction."""

    name = "delimiters"

    def apply(self, text: str, ctx: ConversionContext) -> str:
        rules = FORWARD_RULES if ctx.direction is Direction.FORWARD else REVERSE_RULES
        return normalize_delimiters(text, ctx, rules)
