"""Lexical scanning helpers shared by the phases.

Phases never splice strings in place. A scan collects ``Edit`` records in
the coordinates of the string it scans, and ``apply_edits`` builds the
output in one pass.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_QUOTE_PREFIX = re.compile(r"[ \t]*(?:>[ \t]?)+")
_ROW_SPACING = re.compile(r"\[\s*-?[\d.]+\s*[a-z]{2}\s*\]")


@dataclass(frozen=True)
class Edit:
    """Replace ``text[start:end]`` with ``replacement``."""

    start: int
    end: int
    replacement: str


def apply_edits(text: str, edits: list[Edit], start: int = 0, end: int | None = None) -> str:
    """Apply non-overlapping edits to ``text[start:end]``.

    Edit offsets are absolute positions in ``text``; the returned string
    covers only the requested window.
    """
    if end is None:
        end = len(text)
    parts: list[str] = []
    cursor = start
    for edit in sorted(edits, key=lambda e: e.start):
        if edit.start < cursor or edit.end > end:
            raise ValueError(
                f"edit {edit.start}:{edit.end} outside window {cursor}:{end}"
            )
        parts.append(text[cursor:edit.start])
        parts.append(edit.replacement)
        cursor = edit.end
    parts.append(text[cursor:end])
    return "".join(parts)


def read_group(text: str, pos: int, opener: str = "{", closer: str = "}") -> tuple[str, int] | None:
    """Read a balanced group starting at ``pos``.

    Returns ``(inner_text, index_after_closer)`` or None when ``text[pos]``
    is not ``opener`` or the group never closes. Backslash escapes are
    skipped, so ``\\{`` does not count as a brace.
    """
    if pos >= len(text) or text[pos] != opener:
        return None
    depth = 0
    i = pos
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[pos + 1:i], i + 1
        i += 1
    return None


def skip_spaces(text: str, pos: int) -> int:
    """Skip blanks and at most one line break (a blank line ends a run)."""
    newlines = 0
    n = len(text)
    while pos < n and text[pos] in " \t\r\n":
        if text[pos] == "\n":
            newlines += 1
            if newlines > 1:
                break
        pos += 1
    return pos


def split_rows(content: str) -> list[str]:
    r"""Split math content on ``\\`` at brace depth 0, outside nested environments."""
    rows: list[str] = []
    depth = 0
    env_depth = 0
    last = 0
    i = 0
    n = len(content)
    while i < n:
        ch = content[i]
        if ch == "\\":
            if content.startswith("\\\\", i):
                if depth == 0 and env_depth == 0:
                    rows.append(content[last:i])
                    last = i + 2
                i += 2
                continue
            if content.startswith("\\begin", i):
                env_depth += 1
                i += 6
                continue
            if content.startswith("\\end", i) and not content[i + 4:i + 5].isalpha():
                env_depth = max(env_depth - 1, 0)
                i += 4
                continue
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth = max(depth - 1, 0)
        i += 1
    rows.append(content[last:])
    rows = [row.strip() for row in rows]
    while len(rows) > 1 and not rows[-1]:
        rows.pop()
    return rows


def join_rows(rows: list[str]) -> str:
    r"""Join rows one per line with ``\\`` separators.

    A row that starts with a spacing argument such as ``[2pt]`` hands it
    back to the preceding separator.
    """
    lines: list[str] = []
    for row in rows:
        spacing = ""
        if lines:
            match = _ROW_SPACING.match(row)
            if match:
                spacing = match.group(0)
                row = row[match.end():].strip()
            lines[-1] += " \\\\" + spacing
        lines.append(row)
    return "\n".join(lines)


def line_prefix(text: str, pos: int) -> str:
    """Blockquote/callout prefix (``> ``) of the line containing ``pos``.

    Only returned when nothing but the prefix precedes ``pos`` on that line.
    """
    line_start = text.rfind("\n", 0, pos) + 1
    match = _QUOTE_PREFIX.match(text, line_start)
    if match and match.end() == pos:
        return match.group(0)
    return ""


def strip_prefix(lines: list[str], prefix: str) -> list[str]:
    """Remove a quote prefix from each line that carries it."""
    if not prefix:
        return lines
    bare = prefix.rstrip()
    out = []
    for line in lines:
        if line.startswith(prefix):
            out.append(line[len(prefix):])
        elif line.rstrip() == bare:
            out.append("")
        else:
            out.append(line)
    return out


def is_escaped(text: str, pos: int) -> bool:
    """True when the backslash at ``pos`` is itself escaped (``\\\\name``)."""
    count = 0
    i = pos - 1
    while i >= 0 and text[i] == "\\":
        count += 1
        i -= 1
    return count % 2 == 1
