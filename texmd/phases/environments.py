"""Environment resolver — stack-based matching of \\begin/\\end regions.

One left-to-right scan pushes a frame for every tracked ``\\begin{X}`` and
pops it on the matching ``\\end{X}``. Each frame keeps the edits of its
already converted children; when the frame closes they are applied to its
content, the content goes through the converter registered for the name,
and the result becomes a single edit in the enclosing frame. The document
is rebuilt once at the end, so no offset correction is needed while
scanning.

Malformed structure never aborts the scan:
    * a disallowed nesting is reported and the push goes ahead;
    * a close that does not match leaves the affected region raw;
    * frames still open at the end are reported and left raw.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from texmd.config import PipelineConfig
from texmd.phases._scan import (
    Edit,
    apply_edits,
    is_escaped,
    join_rows,
    read_group,
    split_rows,
)
from texmd.phases.base import BasePhase, DiagnosticKind
from texmd.phases.delimiters import display_block
from texmd.phases.theorems import NEWTHEOREM_RE

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(
    r"\\(?P<marker>begin|end)\s*\{\s*(?P<env>[^{}\s]+)\s*\}"
    r"|\\section(?P<section_star>\*?)\s*(?=[\[{])"
    r"|\\newtheorem\*?\s*\{"
)

MATRIX_ENVIRONMENTS = frozenset({
    "matrix", "pmatrix", "bmatrix", "Bmatrix", "vmatrix", "Vmatrix", "smallmatrix",
})

INNER_MATH_ENVIRONMENTS = MATRIX_ENVIRONMENTS | frozenset({
    "cases", "array", "subarray", "aligned", "gathered", "alignedat",
})

DISPLAY_ENVIRONMENTS = frozenset({
    "equation", "equation*", "displaymath",
    "align", "align*", "flalign", "flalign*", "alignat", "alignat*",
    "eqnarray", "eqnarray*",
    "gather", "gather*", "multline", "multline*",
    "split", "CD",
})

LEGACY_ARRAY_ENVIRONMENTS = frozenset({"eqnarray", "eqnarray*"})

CONTAINER_ENVIRONMENTS = frozenset({"subequations"})

# Environments whose \begin takes one mandatory argument.
_ARGUMENT_ENVIRONMENTS = frozenset({"array", "subarray", "alignat", "alignat*", "alignedat"})

_NUMBERED = frozenset({"equation", "multline"})
_NO_NUMBER = re.compile(r"\\(?:notag|nonumber)(?![A-Za-z])")
_EQNARRAY_CELL = re.compile(r"&([^&]*)&")


def _nesting_rules() -> dict[str, frozenset[str]]:
    rules: dict[str, frozenset[str]] = {}
    for name in DISPLAY_ENVIRONMENTS:
        rules[name] = INNER_MATH_ENVIRONMENTS
    for name in ("equation", "equation*", "displaymath"):
        rules[name] = INNER_MATH_ENVIRONMENTS | {"split"}
    for name in INNER_MATH_ENVIRONMENTS:
        rules[name] = INNER_MATH_ENVIRONMENTS
    return rules


# Outer name -> names allowed directly inside it. Names absent here
# (theorem-like, containers, extra environments) accept anything.
NESTING_RULES: dict[str, frozenset[str]] = _nesting_rules()


@dataclass
class Frame:
    """One open environment during a scan."""

    name: str
    start: int
    content_start: int
    edits: list[Edit] = field(default_factory=list)
    argument: str | None = None
    number: str | None = None
    title: str | None = None
    inline: bool = False


Converter = Callable[[Frame, str, "ConversionContext"], str]


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


def _with_tag(body: str, frame: Frame, ctx: ConversionContext) -> str:
    if (
        ctx.config.number_equations
        and frame.name in _NUMBERED
        and not _NO_NUMBER.search(body)
    ):
        return f"{body} \\tag{{{ctx.next_equation_number()}}}"
    return body


def convert_equation(frame: Frame, content: str, ctx: ConversionContext) -> str:
    """equation / equation* / displaymath -> plain display block."""
    return display_block(_with_tag(content.strip(), frame, ctx))


def convert_aligned(frame: Frame, content: str, ctx: ConversionContext) -> str:
    """align-like environments -> display block around ``aligned``."""
    rows = split_rows(content)
    if frame.name in LEGACY_ARRAY_ENVIRONMENTS:
        rows = [_EQNARRAY_CELL.sub(lambda m: "&" + m.group(1).strip(), row, count=1) for row in rows]
    return display_block("\\begin{aligned}\n" + join_rows(rows) + "\n\\end{aligned}")


def convert_gather(frame: Frame, content: str, ctx: ConversionContext) -> str:
    """gather / gather* -> display block around ``gathered``."""
    return display_block("\\begin{gathered}\n" + join_rows(split_rows(content)) + "\n\\end{gathered}")


def convert_multline(frame: Frame, content: str, ctx: ConversionContext) -> str:
    """multline -> left-anchored rows with growing indentation."""
    rows = split_rows(content)
    shaped = []
    for i, row in enumerate(rows):
        if i == 0:
            shaped.append("& " + row)
        elif i == len(rows) - 1:
            shaped.append("& \\qquad " + row)
        else:
            shaped.append("& \\quad " + row)
    body = "\\begin{aligned}\n" + join_rows(shaped) + "\n\\end{aligned}"
    return display_block(_with_tag(body, frame, ctx))


def _reflowed(frame: Frame, content: str) -> str:
    argument = f"{{{frame.argument}}}" if frame.argument is not None else ""
    return (
        f"\\begin{{{frame.name}}}{argument}\n"
        + join_rows(split_rows(content))
        + f"\n\\end{{{frame.name}}}"
    )


def convert_inner(frame: Frame, content: str, ctx: ConversionContext) -> str:
    """Matrix family, cases, array, split, CD -> reflowed rows inside the markers."""
    return _reflowed(frame, content)


def convert_container(frame: Frame, content: str, ctx: ConversionContext) -> str:
    """subequations -> its converted children."""
    return content.strip()


def convert_unknown(frame: Frame, content: str, ctx: ConversionContext) -> str:
    """Generic display block that keeps the original environment name."""
    ctx.report(
        DiagnosticKind.UNKNOWN_ENVIRONMENT,
        f"No converter for environment {frame.name}; wrapped as display math",
        frame.start,
    )
    return display_block(
        f"\\begin{{{frame.name}}}\n{content.strip()}\n\\end{{{frame.name}}}"
    )


def default_converters() -> dict[str, Converter]:
    """Fresh name -> converter registry."""
    registry: dict[str, Converter] = {}
    for name in ("equation", "equation*", "displaymath"):
        registry[name] = convert_equation
    for name in ("align", "align*", "flalign", "flalign*", "alignat", "alignat*",
                 "eqnarray", "eqnarray*"):
        registry[name] = convert_aligned
    for name in ("gather", "gather*"):
        registry[name] = convert_gather
    for name in ("multline", "multline*"):
        registry[name] = convert_multline
    for name in INNER_MATH_ENVIRONMENTS | {"split", "CD"}:
        registry[name] = convert_inner
    for name in CONTAINER_ENVIRONMENTS:
        registry[name] = convert_container
    return registry


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class EnvironmentResolver:
    """Scans a document and converts every well-formed tracked region."""

    def __init__(self, converters: dict[str, Converter] | None = None) -> None:
        self.converters = converters if converters is not None else default_converters()

    def is_tracked(self, name: str, ctx: ConversionContext) -> bool:
        if name in LEGACY_ARRAY_ENVIRONMENTS and not ctx.config.convert_legacy_array_env:
            return False
        return (
            name in self.converters
            or name in ctx.config.extra_environments
            or ctx.theorems.is_theorem(name)
        )

    def resolve(self, text: str, ctx: ConversionContext) -> str:
        stack: list[Frame] = []
        top_edits: list[Edit] = []
        cursor = 0

        def sink() -> list[Edit]:
            return stack[-1].edits if stack else top_edits

        for match in _TOKEN_RE.finditer(text):
            if match.start() < cursor or is_escaped(text, match.start()):
                continue

            marker = match.group("marker")
            if marker == "begin":
                frame = self._open(text, match, stack, ctx)
                if frame is not None:
                    stack.append(frame)
                    cursor = frame.content_start
            elif marker == "end":
                self._close(text, match, stack, top_edits, ctx)
            elif match.group(0).startswith("\\section"):
                if not match.group("section_star"):
                    ctx.theorems.update_section(ctx.theorems.section + 1)
            else:
                declaration = NEWTHEOREM_RE.match(text, match.start())
                if declaration is None:
                    logger.warning("Unparseable \\newtheorem at %d", match.start())
                    continue
                ctx.theorems.handle_declaration(declaration.group(0))
                sink().append(Edit(declaration.start(), declaration.end(), ""))
                cursor = declaration.end()

        while stack:
            frame = stack.pop()
            ctx.report(
                DiagnosticKind.UNMATCHED_ENVIRONMENT,
                f"\\begin{{{frame.name}}} is never closed",
                frame.start,
            )
            sink().extend(frame.edits)

        return apply_edits(text, top_edits)

    def _open(
        self,
        text: str,
        match: re.Match[str],
        stack: list[Frame],
        ctx: ConversionContext,
    ) -> Frame | None:
        name = match.group("env")
        if not self.is_tracked(name, ctx):
            return None

        if stack:
            outer = stack[-1].name
            allowed = NESTING_RULES.get(outer)
            if allowed is not None and name not in allowed:
                ctx.report(
                    DiagnosticKind.INVALID_NESTING,
                    f"{name} cannot be nested inside {outer}",
                    match.start(),
                )

        frame = Frame(name=name, start=match.start(), content_start=match.end())
        if name in _ARGUMENT_ENVIRONMENTS and name in self.converters:
            group = read_group(text, match.end())
            if group is not None:
                frame.argument, frame.content_start = group
        elif ctx.theorems.is_theorem(name) and name not in self.converters:
            pos = match.end()
            while pos < len(text) and text[pos] in " \t":
                pos += 1
            group = read_group(text, pos, "[", "]")
            if group is not None:
                frame.title, frame.content_start = group
            frame.number = ctx.theorems.next_number(name)
            line_start = text.rfind("\n", 0, match.start()) + 1
            before = NEWTHEOREM_RE.sub("", text[line_start:match.start()])
            frame.inline = bool(before.strip())
        return frame

    def _close(
        self,
        text: str,
        match: re.Match[str],
        stack: list[Frame],
        top_edits: list[Edit],
        ctx: ConversionContext,
    ) -> None:
        name = match.group("env")
        if not self.is_tracked(name, ctx):
            return

        if stack and stack[-1].name == name:
            frame = stack.pop()
            content = apply_edits(text, frame.edits, frame.content_start, match.start())
            converted = self._convert(frame, content, ctx)
            target = stack[-1].edits if stack else top_edits
            target.append(Edit(frame.start, match.end(), converted))
            logger.debug("Converted %s at %d", name, frame.start)
            return

        depth = next(
            (i for i in range(len(stack) - 1, -1, -1) if stack[i].name == name),
            None,
        )
        if depth is None:
            expected = f"\\end{{{stack[-1].name}}}" if stack else "no open environment"
            ctx.report(
                DiagnosticKind.ENVIRONMENT_MISMATCH,
                f"\\end{{{name}}} found where {expected} was expected",
                match.start(),
            )
            return

        # Unwind to the matching frame; every region involved stays raw
        # but keeps its converted children.
        while len(stack) > depth:
            frame = stack.pop()
            if frame.name != name or len(stack) > depth:
                ctx.report(
                    DiagnosticKind.ENVIRONMENT_MISMATCH,
                    f"\\begin{{{frame.name}}} closed by \\end{{{name}}}",
                    frame.start,
                )
            target = stack[-1].edits if stack else top_edits
            target.extend(frame.edits)

    def _convert(self, frame: Frame, content: str, ctx: ConversionContext) -> str:
        converter = self.converters.get(frame.name)
        if converter is not None:
            return converter(frame, content, ctx)
        if ctx.theorems.is_theorem(frame.name):
            callout = ctx.theorems.render(frame.name, content, frame.number, frame.title)
            # A callout head only counts at the start of its own block
            return "\n\n" + callout if frame.inline else callout
        return convert_unknown(frame, content, ctx)


class EnvironmentPhase(BasePhase):
    """Environment resolution over the whole document."""

    name = "environments"

    def __init__(self, converters: dict[str, Converter] | None = None) -> None:
        self.resolver = EnvironmentResolver(converters)

    def enabled(self, config: PipelineConfig) -> bool:
        return config.convert_environments

    def apply(self, text: str, ctx: ConversionContext) -> str:
        return self.resolver.resolve(text, ctx)
