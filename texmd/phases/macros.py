"""Macro engine — collect user macro definitions, then expand invocations.

Definitions (\\newcommand, \\renewcommand, \\providecommand, \\def and
\\DeclareMathOperator) are removed from the text and expanded one macro at
a time, longest name first, so ``\\R`` never eats the start of ``\\RR``.
Each macro gets exactly one pass: a body that invokes another macro is
expanded only if that macro comes later in the order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from texmd.config import PipelineConfig
from texmd.phases._scan import Edit, apply_edits, is_escaped, read_group, skip_spaces
from texmd.phases.base import BasePhase, DiagnosticKind

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext

logger = logging.getLogger(__name__)

MAX_ARITY = 9

_DEFINITION_RE = re.compile(
    r"\\(?P<cmd>newcommand|renewcommand|providecommand|DeclareMathOperator)(?P<star>\*?)"
    r"|\\def(?![A-Za-z])"
)
_CONTROL_SEQ = re.compile(r"\\(?:[A-Za-z]+|[^A-Za-z\s])")
_DEF_PARAMS = re.compile(r"(?:#[1-9])*")
_NAME_RE = re.compile(r"^[A-Za-z]+$")
_PLACEHOLDER = re.compile(r"#(#|[1-9])")


@dataclass(frozen=True)
class MacroDefinition:
    """A user or built-in text-substitution rule."""

    name: str
    arity: int
    body: str
    default: str | None = None


BUILTIN_MACROS: tuple[MacroDefinition, ...] = (
    MacroDefinition("R", 0, "\\mathbb{R}"),
    MacroDefinition("N", 0, "\\mathbb{N}"),
    MacroDefinition("Z", 0, "\\mathbb{Z}"),
    MacroDefinition("Q", 0, "\\mathbb{Q}"),
    MacroDefinition("C", 0, "\\mathbb{C}"),
    MacroDefinition("RR", 0, "\\mathbb{R}"),
    MacroDefinition("NN", 0, "\\mathbb{N}"),
    MacroDefinition("ZZ", 0, "\\mathbb{Z}"),
    MacroDefinition("QQ", 0, "\\mathbb{Q}"),
    MacroDefinition("CC", 0, "\\mathbb{C}"),
    MacroDefinition("abs", 1, "\\left|#1\\right|"),
    MacroDefinition("norm", 1, "\\left\\|#1\\right\\|"),
)


def _read_name(text: str, pos: int) -> tuple[str, int] | None:
    """Read ``{\\name}`` or ``\\name`` at ``pos``; returns the raw name text."""
    if pos < len(text) and text[pos] == "{":
        group = read_group(text, pos)
        if group is None:
            return None
        return group[0].strip(), group[1]
    match = _CONTROL_SEQ.match(text, pos)
    if match:
        return match.group(0), match.end()
    return None


def _parse_newcommand(text: str, pos: int) -> tuple[str, str | None, str | None, str, int] | None:
    """Parse ``{\\name}[N][default]{body}`` -> (raw_name, arity, default, body, end)."""
    name = _read_name(text, skip_spaces(text, pos))
    if name is None:
        return None
    raw_name, pos = name

    arity: str | None = None
    default: str | None = None
    pos = skip_spaces(text, pos)
    if pos < len(text) and text[pos] == "[":
        group = read_group(text, pos, "[", "]")
        if group is None:
            return None
        arity, pos = group[0].strip(), group[1]
        pos = skip_spaces(text, pos)
        if pos < len(text) and text[pos] == "[":
            group = read_group(text, pos, "[", "]")
            if group is None:
                return None
            default, pos = group[0], group[1]
            pos = skip_spaces(text, pos)

    body = read_group(text, pos)
    if body is None:
        return None
    return raw_name, arity, default, body[0], body[1]


def _parse_def(text: str, pos: int) -> tuple[str, str, str, int] | None:
    """Parse ``\\name#1#2{body}`` -> (raw_name, arity, body, end)."""
    match = _CONTROL_SEQ.match(text, skip_spaces(text, pos))
    if not match:
        return None
    params = _DEF_PARAMS.match(text, match.end())
    arity = str(params.group(0).count("#")) if params else "0"
    end = params.end() if params else match.end()
    body = read_group(text, skip_spaces(text, end))
    if body is None:
        return None
    return match.group(0), arity, body[0], body[1]


def _parse_operator(text: str, pos: int, starred: bool) -> tuple[str, str, int] | None:
    """Parse ``{\\name}{text}`` of \\DeclareMathOperator -> (raw_name, body, end)."""
    name = _read_name(text, skip_spaces(text, pos))
    if name is None:
        return None
    raw_name, pos = name
    label = read_group(text, skip_spaces(text, pos))
    if label is None:
        return None
    command = "\\operatorname*" if starred else "\\operatorname"
    return raw_name, f"{command}{{{label[0]}}}", label[1]


def collect_definitions(text: str, ctx: ConversionContext) -> tuple[str, dict[str, MacroDefinition]]:
    """Remove valid definitions from ``text`` and return them by name.

    Invalid names and arities are reported and their text is left alone.
    """
    definitions: dict[str, MacroDefinition] = {}
    edits: list[Edit] = []
    cursor = 0

    for match in _DEFINITION_RE.finditer(text):
        if match.start() < cursor or is_escaped(text, match.start()):
            continue
        cmd = match.group("cmd") or "def"
        default: str | None = None

        if cmd == "def":
            parsed_def = _parse_def(text, match.end())
            if parsed_def is None:
                ctx.report(DiagnosticKind.INVALID_MACRO_NAME, "Malformed \\def", match.start())
                continue
            raw_name, arity_text, body, end = parsed_def
        elif cmd == "DeclareMathOperator":
            parsed_op = _parse_operator(text, match.end(), bool(match.group("star")))
            if parsed_op is None:
                ctx.report(
                    DiagnosticKind.INVALID_MACRO_NAME,
                    "Malformed \\DeclareMathOperator",
                    match.start(),
                )
                continue
            raw_name, body, end = parsed_op
            arity_text = "0"
        else:
            parsed = _parse_newcommand(text, match.end())
            if parsed is None:
                ctx.report(DiagnosticKind.INVALID_MACRO_NAME, f"Malformed \\{cmd}", match.start())
                continue
            raw_name, arity_opt, default, body, end = parsed
            arity_text = arity_opt if arity_opt is not None else "0"

        name = raw_name[1:] if raw_name.startswith("\\") else ""
        if not _NAME_RE.match(name):
            ctx.report(
                DiagnosticKind.INVALID_MACRO_NAME,
                f"Invalid macro name {raw_name!r} in \\{cmd}",
                match.start(),
            )
            continue
        if not arity_text.isdigit() or int(arity_text) > MAX_ARITY:
            ctx.report(
                DiagnosticKind.INVALID_MACRO_NAME,
                f"Invalid argument count {arity_text!r} for \\{name}",
                match.start(),
            )
            continue
        arity = int(arity_text)
        if default is not None and arity == 0:
            default = None

        edits.append(Edit(match.start(), end, ""))
        cursor = end
        if cmd == "providecommand" and name in definitions:
            continue
        definitions[name] = MacroDefinition(name, arity, body, default)
        logger.debug("Collected macro \\%s with %d argument(s)", name, arity)

    return apply_edits(text, edits), definitions


def _substitute(body: str, args: list[str]) -> str:
    def repl(match: re.Match[str]) -> str:
        token = match.group(1)
        if token == "#":
            return "#"
        index = int(token) - 1
        return args[index] if index < len(args) else ""

    return _PLACEHOLDER.sub(repl, body)


def _expand_one(text: str, macro: MacroDefinition, ctx: ConversionContext) -> str:
    pattern = re.compile(r"\\" + re.escape(macro.name) + r"(?![A-Za-z])")
    edits: list[Edit] = []
    cursor = 0

    for match in pattern.finditer(text):
        if match.start() < cursor or is_escaped(text, match.start()):
            continue
        pos = match.end()
        args: list[str] = []
        needed = macro.arity

        if macro.default is not None:
            probe = skip_spaces(text, pos)
            group = read_group(text, probe, "[", "]")
            if group is not None:
                args.append(group[0])
                pos = group[1]
            else:
                args.append(macro.default)
            needed -= 1

        for _ in range(needed):
            group = read_group(text, skip_spaces(text, pos))
            if group is None:
                break
            args.append(group[0])
            pos = group[1]

        if len(args) != macro.arity:
            ctx.report(
                DiagnosticKind.ARITY_MISMATCH,
                f"\\{macro.name} expects {macro.arity} argument(s), got {len(args)}",
                match.start(),
            )

        edits.append(Edit(match.start(), pos, _substitute(macro.body, args)))
        cursor = pos

    return apply_edits(text, edits)


def expand_macros(text: str, macros: Iterable[MacroDefinition], ctx: ConversionContext) -> str:
    """Expand ``macros`` in descending name-length order, one pass each."""
    for macro in sorted(macros, key=lambda m: (-len(m.name), m.name)):
        text = _expand_one(text, macro, ctx)
    return text


class MacroPhase(BasePhase):
    """Definition collection followed by user and built-in expansion."""

    name = "macros"

    def enabled(self, config: PipelineConfig) -> bool:
        return config.expand_macros

    def apply(self, text: str, ctx: ConversionContext) -> str:
        text, definitions = collect_definitions(text, ctx)
        ctx.macros.update(definitions)
        text = expand_macros(text, ctx.macros.values(), ctx)
        return expand_macros(text, BUILTIN_MACROS, ctx)
