"""Tests for the cleanup passes."""

from __future__ import annotations

from texmd.config import PipelineConfig
from texmd.phases.cleanup import (
    CleanupPhase,
    strip_sizing_commands,
    tidy_blank_lines,
    unify_prose_command,
)
from texmd.runtime.context import ConversionContext


def test_strip_left_right():
    assert strip_sizing_commands(r"\left( x \right)") == "( x )"


def test_strip_null_delimiter():
    assert strip_sizing_commands(r"\left. \frac{a}{b} \right|") == r" \frac{a}{b} |"


def test_strip_big_family():
    assert strip_sizing_commands(r"\bigl[ x \bigr]") == "[ x ]"
    assert strip_sizing_commands(r"\Bigg\{ x \Bigg\}") == r"\{ x \}"
    assert strip_sizing_commands(r"\left\| v \right\|") == r"\| v \|"


def test_strip_keeps_other_commands():
    text = r"\bigcup_i A_i \leftarrow \rightarrow \left\langle x \right\rangle"
    assert strip_sizing_commands(text) == text


def test_strip_only_whole_pairs():
    assert strip_sizing_commands(r"\left\langle x \right)") == r"\left\langle x \right)"
    assert strip_sizing_commands(r"\left( x \right\rVert") == r"\left( x \right\rVert"
    assert strip_sizing_commands(r"\left\lfloor x \right\rfloor") == r"\left\lfloor x \right\rfloor"


def test_strip_nested_pairs():
    text = r"\left( \left\langle a \right\rangle + \left[ b \right] \right)"
    assert strip_sizing_commands(text) == r"( \left\langle a \right\rangle + [ b ] )"


def test_unmatched_left_right_kept():
    assert strip_sizing_commands(r"\left( x") == r"\left( x"
    assert strip_sizing_commands(r"x \right)") == r"x \right)"


def test_mixed_pair_survives_pipeline():
    from texmd.pipeline import transform

    out, _ = transform(r"$\left\langle x \right)$")
    assert out == r"$\left\langle x \right)$"
    assert out.count("\\left") == out.count("\\right") == 1


def test_unify_prose_command():
    assert unify_prose_command(r"x \text{if } y") == r"x \mathrm{if } y"
    assert unify_prose_command(r"\textbf{x}") == r"\textbf{x}"


def test_tidy_blank_lines():
    assert tidy_blank_lines("a  \n\n\n\nb\t\n") == "a\n\nb\n"


def test_phase_respects_toggles():
    ctx = ConversionContext(
        config=PipelineConfig(strip_sizing_commands=False, unify_prose_command=False)
    )
    text = "\\left( \\text{a} \\right)\n\n\n"
    assert CleanupPhase().apply(text, ctx) == "\\left( \\text{a} \\right)\n\n"
