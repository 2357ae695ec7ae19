"""Tests for the texmd command line."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from texmd.config import Direction
from texmd.phases.base import Diagnostic, DiagnosticKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _console() -> Console:
    """Return a no-output Console for testing (avoids terminal pollution)."""
    return Console(file=MagicMock(), highlight=False)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    import texmd.settings as settings

    monkeypatch.setattr(settings, "_ENV_FILE", tmp_path / ".env.test")


@pytest.fixture()
def clean_source(tmp_path) -> Path:
    path = tmp_path / "note.tex"
    path.write_text(r"\begin{equation} x \end{equation} \cite{a}", encoding="utf-8")
    return path


@pytest.fixture()
def broken_source(tmp_path) -> Path:
    path = tmp_path / "broken.tex"
    path.write_text("See \\ref{missing}.\n\\begin{equation} x", encoding="utf-8")
    return path


# ===========================================================================
# convert
# ===========================================================================


class TestConvert:
    @patch("texmd.cli.main.Console")
    def test_writes_default_output(self, mock_console_cls, clean_source):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        main(args=["convert", str(clean_source)])
        output = clean_source.with_suffix(".md")
        assert output.read_text(encoding="utf-8") == "$$\nx\n$$ [cite: a]"

    @patch("texmd.cli.main.Console")
    def test_explicit_output(self, mock_console_cls, clean_source, tmp_path):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        target = tmp_path / "out"
        target.mkdir()
        main(args=["convert", str(clean_source), "-o", str(target / "x.md")])
        assert (target / "x.md").exists()

    @patch("texmd.cli.main.questionary")
    @patch("texmd.cli.main.Console")
    def test_confirm_before_writing_with_diagnostics(
        self, mock_console_cls, mock_q, broken_source
    ):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        mock_q.confirm.return_value.ask.return_value = True
        main(args=["convert", str(broken_source)])
        mock_q.confirm.assert_called_once()
        assert broken_source.with_suffix(".md").exists()

    @patch("texmd.cli.main.questionary")
    @patch("texmd.cli.main.Console")
    def test_declined_confirm_skips_write(self, mock_console_cls, mock_q, broken_source):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        mock_q.confirm.return_value.ask.return_value = False
        main(args=["convert", str(broken_source)])
        assert not broken_source.with_suffix(".md").exists()

    @patch("texmd.cli.main.questionary")
    @patch("texmd.cli.main.Console")
    def test_cancelled_confirm_exits_1(self, mock_console_cls, mock_q, broken_source):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        mock_q.confirm.return_value.ask.return_value = None
        with pytest.raises(SystemExit) as exc_info:
            main(args=["convert", str(broken_source)])
        assert exc_info.value.code == 1

    @patch("texmd.cli.main.questionary")
    @patch("texmd.cli.main.Console")
    def test_yes_skips_confirm(self, mock_console_cls, mock_q, broken_source):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        main(args=["convert", str(broken_source), "--yes"])
        mock_q.confirm.assert_not_called()
        assert broken_source.with_suffix(".md").exists()

    @patch("texmd.cli.main.Console")
    def test_reverse(self, mock_console_cls, tmp_path):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        source = tmp_path / "note.md"
        source.write_text("$x$", encoding="utf-8")
        main(args=["convert", str(source), "--reverse"])
        assert (tmp_path / "note.tex").read_text(encoding="utf-8") == r"\(x\)"

    @patch("texmd.cli.main.Console")
    def test_missing_input_exits_1(self, mock_console_cls, tmp_path):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["convert", str(tmp_path / "absent.tex")])
        assert exc_info.value.code == 1


# ===========================================================================
# check / config / usage
# ===========================================================================


class TestOtherCommands:
    @patch("texmd.cli.main.Console")
    def test_check_clean(self, mock_console_cls, clean_source):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        main(args=["check", str(clean_source)])

    @patch("texmd.cli.main.Console")
    def test_check_with_diagnostics_exits_2(self, mock_console_cls, broken_source):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["check", str(broken_source)])
        assert exc_info.value.code == 2
        assert not broken_source.with_suffix(".md").exists()

    @patch("texmd.cli.main.Console")
    def test_config(self, mock_console_cls):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        main(args=["config"])

    @patch("texmd.cli.main.Console")
    def test_config_shows_service_url(self, mock_console_cls):
        from texmd.cli.main import main

        console = Console(record=True, width=200, file=MagicMock())
        mock_console_cls.return_value = console
        main(args=["config"])
        assert "http://localhost:" in console.export_text()

    @patch("texmd.cli.main.Console")
    def test_config_set_writes_env_file(self, mock_console_cls, monkeypatch):
        import texmd.settings as settings
        from texmd.cli.main import main

        monkeypatch.delenv("TEXMD_REMOVE_LABELS", raising=False)
        mock_console_cls.return_value = _console()
        main(args=["config", "set", "texmd_remove_labels", "true"])
        assert settings.env_path().read_text() == "TEXMD_REMOVE_LABELS=true\n"
        assert settings.load_pipeline_config().remove_labels is True

    @patch("texmd.cli.main.Console")
    def test_config_set_rejects_bad_value(self, mock_console_cls):
        import texmd.settings as settings
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["config", "set", "TEXMD_REFERENCE_MODE", "guess"])
        assert exc_info.value.code == 1
        assert not settings.env_path().exists()

    @patch("texmd.cli.main.Console")
    def test_config_set_rejects_unknown_key(self, mock_console_cls):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["config", "set", "TEXMD_COLOR", "blue"])
        assert exc_info.value.code == 1

    @patch("texmd.cli.main.Console")
    def test_config_get(self, mock_console_cls, monkeypatch):
        from texmd.cli.main import main

        monkeypatch.delenv("TEXMD_PORT", raising=False)
        console = Console(record=True, width=120, file=MagicMock())
        mock_console_cls.return_value = console
        main(args=["config", "set", "TEXMD_PORT", "9001"])
        main(args=["config", "get", "texmd_port"])
        assert "TEXMD_PORT=9001" in console.export_text()

    @patch("texmd.cli.main.Console")
    def test_config_get_unset_exits_1(self, mock_console_cls, monkeypatch):
        from texmd.cli.main import main

        monkeypatch.delenv("TEXMD_WORKERS", raising=False)
        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["config", "get", "TEXMD_WORKERS"])
        assert exc_info.value.code == 1

    @patch("texmd.cli.main.Console")
    def test_config_bad_action_exits_1(self, mock_console_cls):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["config", "unset", "TEXMD_PORT"])
        assert exc_info.value.code == 1

    @patch("texmd.cli.main.Console")
    def test_help_returns(self, mock_console_cls):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        main(args=["--help"])

    @patch("texmd.cli.main.Console")
    def test_unknown_subcommand_exits(self, mock_console_cls):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["bogus"])
        assert exc_info.value.code == 1

    @patch("texmd.cli.main.Console")
    def test_unknown_option_exits(self, mock_console_cls, clean_source):
        from texmd.cli.main import main

        mock_console_cls.return_value = _console()
        with pytest.raises(SystemExit) as exc_info:
            main(args=["convert", str(clean_source), "--fast"])
        assert exc_info.value.code == 1


# ===========================================================================
# Helpers
# ===========================================================================


class TestHelpers:
    def test_default_output_never_overwrites_source(self):
        from texmd.cli.main import default_output

        assert default_output(Path("a.tex"), Direction.FORWARD) == Path("a.md")
        assert default_output(Path("a.md"), Direction.FORWARD) == Path("a.converted.md")
        assert default_output(Path("a.md"), Direction.REVERSE) == Path("a.tex")

    def test_line_of(self):
        from texmd.cli._report import line_of

        assert line_of("a\nb\nc", 4) == 3
        assert line_of("abc", 99) == 1

    def test_print_diagnostics_table(self):
        from texmd.cli._report import print_diagnostics

        console = Console(record=True, width=120, file=MagicMock())
        diags = [Diagnostic(DiagnosticKind.UNDEFINED_REFERENCE, "no label", 5)]
        print_diagnostics(diags, console, "line1\nline2")
        output = console.export_text()
        assert "UndefinedReference" in output
        assert "no label" in output
        assert "~Line" in output
