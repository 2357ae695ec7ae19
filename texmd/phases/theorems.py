"""Theorem/callout state machine.

Tracks ``\\newtheorem`` declarations and their counters, including shared
and section-scoped counters, and renders theorem-like environments as
Markdown callouts. One instance belongs to one conversion run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from texmd.config import PipelineConfig
from texmd.phases.base import BasePhase

if TYPE_CHECKING:
    from texmd.runtime.context import ConversionContext

logger = logging.getLogger(__name__)

# \newtheorem{name}[shared]{Prefix}  or  \newtheorem{name}{Prefix}[section]
NEWTHEOREM_RE = re.compile(
    r"\\newtheorem(\*?)\s*\{([^{}]+)\}\s*(?:\[([^\]]+)\])?\s*\{([^{}]+)\}(?:\s*\[([^\]]+)\])?"
)

DEFAULT_CALLOUTS: dict[str, str] = {
    "theorem": "theorem",
    "lemma": "lemma",
    "proposition": "proposition",
    "corollary": "corollary",
    "definition": "definition",
    "example": "example",
    "remark": "remark",
    "proof": "proof",
}

FALLBACK_CALLOUT = "note"

_CALLOUT_HEAD = re.compile(r"^>[ \t]?\[!([A-Za-z]+)\][+-]?[ \t]*(.*)$")
_LEAD_IN = re.compile(r"^[A-Z][\w ]*? \d+(?:\.\d+)*\.[ \t]*")


@dataclass
class TheoremDeclaration:
    """A declared theorem-like environment and its counter."""

    name: str
    prefix: str
    counter: int = 0
    parent: str | None = None
    shared_counter: bool = False
    numbered: bool = True


class TheoremStateMachine:
    """Declarations, counters and the current section number."""

    def __init__(self) -> None:
        self.declarations: dict[str, TheoremDeclaration] = {}
        self.section = 0

    def declare(
        self,
        name: str,
        prefix: str,
        parent: str | None = None,
        shared: bool = False,
        numbered: bool = True,
    ) -> TheoremDeclaration:
        decl = TheoremDeclaration(
            name=name,
            prefix=prefix,
            parent=parent,
            shared_counter=shared,
            numbered=numbered,
        )
        self.declarations[name] = decl
        logger.debug("Declared theorem %s (parent=%s shared=%s)", name, parent, shared)
        return decl

    def handle_declaration(self, command: str) -> TheoremDeclaration | None:
        """Register a ``\\newtheorem`` command; None if it does not parse."""
        match = NEWTHEOREM_RE.match(command.strip())
        if not match:
            return None
        star, name, shared_with, prefix, within = match.groups()
        if shared_with:
            return self.declare(name.strip(), prefix.strip(), parent=shared_with.strip(), shared=True)
        parent = within.strip() if within else None
        return self.declare(name.strip(), prefix.strip(), parent=parent, numbered=not star)

    def is_theorem(self, name: str) -> bool:
        return name in self.declarations or name in DEFAULT_CALLOUTS

    def _display(self, decl: TheoremDeclaration) -> str:
        if decl.parent == "section":
            return f"{self.section}.{decl.counter}"
        return str(decl.counter)

    def next_number(self, name: str) -> str | None:
        """Advance the counter for one instance of ``name``.

        Returns the display number, or None for unregistered or unnumbered
        environments.
        """
        decl = self.declarations.get(name)
        if decl is None or not decl.numbered:
            return None
        if decl.shared_counter and decl.parent and decl.parent != "section":
            parent = self.declarations.get(decl.parent)
            if parent is not None and parent is not decl:
                parent.counter += 1
                decl.counter = parent.counter
                return self._display(parent)
        decl.counter += 1
        return self._display(decl)

    def update_section(self, number: int) -> None:
        """Set the section number and restart section-scoped counters."""
        self.section = number
        for decl in self.declarations.values():
            if decl.parent == "section":
                decl.counter = 0

    def reset(self) -> None:
        self.declarations.clear()
        self.section = 0

    def callout_for(self, name: str) -> str:
        return DEFAULT_CALLOUTS.get(name, FALLBACK_CALLOUT)

    def render(self, name: str, content: str, number: str | None = None, title: str | None = None) -> str:
        """Render one instance as a callout block, closed by a blank line."""
        decl = self.declarations.get(name)
        lead = ""
        if decl is not None:
            lead = f"{decl.prefix} {number}. " if number is not None else f"{decl.prefix}. "

        head = f"> [!{self.callout_for(name)}]"
        if title:
            head += f" {title.strip()}"

        lines = content.strip().split("\n") if content.strip() else [""]
        lines[0] = (lead + lines[0]).rstrip()
        body = "\n".join(f"> {line}" if line.strip() else ">" for line in lines)
        return f"{head}\n{body}\n\n"


def callouts_to_environments(text: str) -> str:
    """Turn theorem-like callouts back into ``\\begin{name} ... \\end{name}``.

    Numbered lead-ins such as ``Theorem 1.2.`` are dropped; nested
    callouts are converted recursively.
    """
    lines = text.split("\n")
    out: list[str] = []
    i = 0
    while i < len(lines):
        head = _CALLOUT_HEAD.match(lines[i])
        if not head or head.group(1) not in DEFAULT_CALLOUTS:
            out.append(lines[i])
            i += 1
            continue

        name, title = head.group(1), head.group(2).strip()
        i += 1
        body: list[str] = []
        while i < len(lines) and lines[i].startswith(">"):
            line = lines[i][1:]
            body.append(line[1:] if line.startswith(" ") else line)
            i += 1
        if body:
            body[0] = _LEAD_IN.sub("", body[0], count=1)
        inner = callouts_to_environments("\n".join(body)).strip()

        opening = f"\\begin{{{name}}}" + (f"[{title}]" if title else "")
        out.append(opening)
        if inner:
            out.append(inner)
        out.append(f"\\end{{{name}}}")
    return "\n".join(out)


class CalloutPhase(BasePhase):
    """Reverse conversion of theorem-like callouts."""

    name = "callouts"

    def enabled(self, config: PipelineConfig) -> bool:
        return config.convert_environments

    def apply(self, text: str, ctx: ConversionContext) -> str:
        return callouts_to_environments(text)
