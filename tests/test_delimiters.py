"""Tests for the delimiter normalizer."""

from __future__ import annotations

from texmd.config import Direction
from texmd.phases.base import DiagnosticKind
from texmd.phases.delimiters import (
    REVERSE_RULES,
    DelimiterPhase,
    display_block,
    normalize_delimiters,
)
from texmd.runtime.context import ConversionContext


def _normalize(text: str, **kwargs) -> tuple[str, ConversionContext]:
    ctx = ConversionContext()
    return normalize_delimiters(text, ctx, **kwargs), ctx


# ---------------------------------------------------------------------------
# Forward
# ---------------------------------------------------------------------------


class TestForward:
    def test_inline(self):
        out, ctx = _normalize(r"a \(x+1\) b")
        assert out == "a $x+1$ b"
        assert ctx.diagnostics == []

    def test_inline_content_trimmed(self):
        out, _ = _normalize(r"\( x \)")
        assert out == "$x$"

    def test_single_line_display_is_compact(self):
        out, _ = _normalize(r"\[ x \]")
        assert out == "$$x$$"

    def test_multi_line_display_drops_blank_lines(self):
        out, _ = _normalize("\\[\n a \n\n b \n\\]")
        assert out == "$$\na\nb\n$$"

    def test_display_inside_callout_keeps_prefix(self):
        out, _ = _normalize("> \\[\n> x\n> \\]")
        assert out == "> $$\n> x\n> $$"

    def test_math_environments(self):
        out, _ = _normalize(r"\begin{math}a\end{math} \begin{displaymath}b\end{displaymath}")
        assert out == "$a$ $$b$$"

    def test_line_break_is_not_a_delimiter(self):
        text = r"a \\[2pt] b"
        out, ctx = _normalize(text)
        assert out == text
        assert ctx.diagnostics == []

    def test_idempotent(self):
        text = "Inline \\(a\\), display\n\\[\nb\n\\]\nend"
        once, _ = _normalize(text)
        twice, ctx = _normalize(once)
        assert twice == once
        assert ctx.diagnostics == []


# ---------------------------------------------------------------------------
# Mismatches
# ---------------------------------------------------------------------------


class TestMismatch:
    def test_unterminated_left_unchanged(self):
        text = r"a \[ x"
        out, ctx = _normalize(text)
        assert out == text
        assert ctx.count(DiagnosticKind.DELIMITER_MISMATCH) == 1

    def test_stray_closer(self):
        text = r"x \] y"
        out, ctx = _normalize(text)
        assert out == text
        assert ctx.count(DiagnosticKind.DELIMITER_MISMATCH) == 1

    def test_interleaved_kinds_left_unchanged(self):
        text = r"\( a \[ b \)"
        out, ctx = _normalize(text)
        assert out == text
        assert ctx.diagnostics
        assert all(d.kind is DiagnosticKind.DELIMITER_MISMATCH for d in ctx.diagnostics)

    def test_well_formed_pair_after_mismatch_still_converted(self):
        out, ctx = _normalize(r"x \] then \(y\)")
        assert out == r"x \] then $y$"
        assert ctx.count(DiagnosticKind.DELIMITER_MISMATCH) == 1


# ---------------------------------------------------------------------------
# Reverse
# ---------------------------------------------------------------------------


class TestReverse:
    def test_dollars_to_brackets(self):
        out, _ = _normalize("$a$ and $$b$$", rules=REVERSE_RULES)
        assert out == r"\(a\) and \[b\]"

    def test_escaped_dollar_ignored(self):
        text = r"costs \$5"
        out, ctx = _normalize(text, rules=REVERSE_RULES)
        assert out == text
        assert ctx.diagnostics == []

    def test_phase_picks_rules_by_direction(self):
        ctx = ConversionContext(direction=Direction.REVERSE)
        assert DelimiterPhase().apply("$x$", ctx) == r"\(x\)"


# ---------------------------------------------------------------------------
# display_block
# ---------------------------------------------------------------------------


class TestDisplayBlock:
    def test_default_is_multi_line(self):
        assert display_block(" x=1 ") == "$$\nx=1\n$$"

    def test_compact(self):
        assert display_block("x", compact=True) == "$$x$$"

    def test_prefix_on_following_lines(self):
        assert display_block("a\nb", prefix="> ") == "$$\n> a\n> b\n> $$"
