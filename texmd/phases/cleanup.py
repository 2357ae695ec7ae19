"""Final cleanup passes over converted Markdown.

Three small passes, run in order: drop redundant delimiter sizing,
rename the prose-in-math command, tidy blank lines.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from texmd.phases._scan import Edit, apply_edits, is_escaped
from texmd.phases.base import BasePhase

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext

_BIG = r"\\[bB]igg?[lrm]?(?![A-Za-z])"

# \big. is invisible; drop it with its dot
_BIG_NULL_DELIMITER = re.compile(_BIG + r"\s*\.")
# Keep the delimiter, drop the sizing command
_BIG_DELIMITER = re.compile(_BIG + r"\s*(?=[()\[\]|]|\\[{}|])")

_PAIR_TOKEN = re.compile(
    r"\\(?P<side>left|right)(?![A-Za-z])\s*(?P<delim>\\[A-Za-z]+|\\.|[^\s\\])"
)
_PLAIN_DELIMITER = re.compile(r"[()\[\]|.]|\\[{}|]")

_PROSE_COMMAND = re.compile(r"\\text(?![A-Za-z])\s*(?=\{)")

_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUN = re.compile(r"\n{3,}")


def _unsized(token: re.Match[str]) -> Edit:
    delim = token.group("delim")
    return Edit(token.start(), token.end(), "" if delim == "." else delim)


def strip_left_right(text: str) -> str:
    r"""Drop ``\left``/``\right`` from matched pairs of plain delimiters.

    A pair is only rewritten as a whole; when either side uses a command
    delimiter such as ``\langle`` both sides are kept, as are unmatched
    tokens. ``\left.``/``\right.`` disappear with their dot.
    """
    stack: list[re.Match[str]] = []
    edits: list[Edit] = []
    for token in _PAIR_TOKEN.finditer(text):
        if is_escaped(text, token.start()):
            continue
        if token.group("side") == "left":
            stack.append(token)
            continue
        if not stack:
            continue
        opening = stack.pop()
        if _PLAIN_DELIMITER.fullmatch(opening.group("delim")) and _PLAIN_DELIMITER.fullmatch(
            token.group("delim")
        ):
            edits.append(_unsized(opening))
            edits.append(_unsized(token))
    return apply_edits(text, edits)


def strip_sizing_commands(text: str) -> str:
    r"""Remove ``\left``/``\right`` pairs and the ``\big`` family before delimiters."""
    result = strip_left_right(text)
    result = _BIG_NULL_DELIMITER.sub("", result)
    return _BIG_DELIMITER.sub("", result)


def unify_prose_command(text: str) -> str:
    r"""Rewrite ``\text{...}`` as ``\mathrm{...}``."""
    return _PROSE_COMMAND.sub(r"\\mathrm", text)


def tidy_blank_lines(text: str) -> str:
    """Drop trailing blanks and collapse runs of blank lines to one."""
    result = _TRAILING_SPACE.sub("", text)
    return _BLANK_RUN.sub("\n\n", result)


class CleanupPhase(BasePhase):
    name = "cleanup"

    def apply(self, text: str, ctx: ConversionContext) -> str:
        result = text
        if ctx.config.strip_sizing_commands:
            result = strip_sizing_commands(result)
        if ctx.config.unify_prose_command:
            result = unify_prose_command(result)
        return tidy_blank_lines(result)
