"""Tests for the macro engine."""

from __future__ import annotations

from texmd.phases.base import DiagnosticKind
from texmd.phases.macros import (
    MacroDefinition,
    MacroPhase,
    collect_definitions,
    expand_macros,
)
from texmd.runtime.context import ConversionContext


def _run(text: str) -> tuple[str, ConversionContext]:
    ctx = ConversionContext()
    return MacroPhase().apply(text, ctx), ctx


# ---------------------------------------------------------------------------
# Definition collection
# ---------------------------------------------------------------------------


class TestCollect:
    def test_newcommand_removed_and_registered(self):
        ctx = ConversionContext()
        text, defs = collect_definitions(r"\newcommand{\vect}[1]{\mathbf{#1}}rest", ctx)
        assert text == "rest"
        assert defs["vect"] == MacroDefinition("vect", 1, r"\mathbf{#1}")

    def test_unbraced_name_form(self):
        ctx = ConversionContext()
        _, defs = collect_definitions(r"\newcommand\eps{\varepsilon}", ctx)
        assert defs["eps"].body == r"\varepsilon"

    def test_non_alphabetic_name_rejected(self):
        text = r"\newcommand{\bad1}{x}"
        ctx = ConversionContext()
        out, defs = collect_definitions(text, ctx)
        assert out == text
        assert defs == {}
        assert ctx.count(DiagnosticKind.INVALID_MACRO_NAME) == 1

    def test_name_without_backslash_rejected(self):
        ctx = ConversionContext()
        _, defs = collect_definitions(r"\newcommand{foo}{x}", ctx)
        assert defs == {}
        assert ctx.count(DiagnosticKind.INVALID_MACRO_NAME) == 1

    def test_arity_above_nine_rejected(self):
        ctx = ConversionContext()
        _, defs = collect_definitions(r"\newcommand{\x}[10]{#1}", ctx)
        assert defs == {}
        assert ctx.count(DiagnosticKind.INVALID_MACRO_NAME) == 1

    def test_providecommand_does_not_override(self):
        out, _ = _run(r"\newcommand{\k}{1}\providecommand{\k}{2}\k")
        assert out == "1"

    def test_renewcommand_overrides(self):
        out, _ = _run(r"\newcommand{\k}{1}\renewcommand{\k}{2}\k")
        assert out == "2"


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


class TestExpand:
    def test_one_argument(self):
        out, ctx = _run(r"\newcommand{\vect}[1]{\mathbf{#1}} $\vect{x}$")
        assert out.strip() == r"$\mathbf{x}$"
        assert ctx.diagnostics == []

    def test_missing_argument_reported_and_empty(self):
        out, ctx = _run(r"\newcommand{\pair}[2]{(#1,#2)}\pair{a}")
        assert out == "(a,)"
        assert ctx.count(DiagnosticKind.ARITY_MISMATCH) == 1

    def test_optional_default_argument(self):
        out, _ = _run(r"\newcommand{\greet}[2][World]{#1, #2}\greet{hi} \greet[Bob]{yo}")
        assert out == "World, hi Bob, yo"

    def test_def_with_parameters(self):
        out, _ = _run(r"\def\sq#1{#1^2}$\sq{x}$")
        assert out == "$x^2$"

    def test_declare_math_operator(self):
        out, _ = _run(r"\DeclareMathOperator{\tr}{tr}$\tr A$")
        assert out == r"$\operatorname{tr} A$"

    def test_longest_name_first(self):
        out, _ = _run(r"\newcommand{\a}{A}\newcommand{\ab}{B}\ab \a")
        assert out == "B A"

    def test_later_macro_in_body_is_expanded(self):
        out, _ = _run(r"\newcommand{\inner}{I}\newcommand{\outerlong}{\inner+1}\outerlong")
        assert out == "I+1"

    def test_single_pass_leaves_earlier_macro_in_body(self):
        out, _ = _run(r"\newcommand{\longname}{L}\newcommand{\s}{\longname}\s")
        assert out == r"\longname"

    def test_escaped_backslash_not_an_invocation(self):
        text = r"a \\RR"
        out, _ = _run(text)
        assert out == text

    def test_hash_hash_becomes_hash(self):
        ctx = ConversionContext()
        out = expand_macros(r"\h", [MacroDefinition("h", 0, "##")], ctx)
        assert out == "#"


# ---------------------------------------------------------------------------
# Built-ins
# ---------------------------------------------------------------------------


class TestBuiltins:
    def test_blackboard_shorthands(self):
        out, _ = _run(r"$x \in \RR$, $n \in \N$")
        assert out == r"$x \in \mathbb{R}$, $n \in \mathbb{N}$"

    def test_abs_and_norm(self):
        out, _ = _run(r"\abs{x} + \norm{v}")
        assert out == r"\left|x\right| + \left\|v\right\|"

    def test_user_macro_shadows_builtin(self):
        out, _ = _run(r"\renewcommand{\R}{\mathcal{R}}\R")
        assert out == r"\mathcal{R}"

    def test_longer_commands_untouched(self):
        text = r"\Rightarrow \Re"
        out, _ = _run(text)
        assert out == text
