"""Tests for Rich Console factory and theme."""

from io import StringIO

from sgrace.output.console import SG_THEME, create_console, get_output


class TestCreateConsole:
    def test_returns_console_with_stringio(self) -> None:
        console = create_console()
        assert isinstance(console.file, StringIO)

    def test_no_color_disables_ansi(self) -> None:
        console = create_console(no_color=True)
        console.print("[sg.alert]BOGUS[/sg.alert]")
        output = get_output(console)
        assert "\x1b" not in output
        assert "BOGUS" in output

    def test_custom_width(self) -> None:
        assert create_console(width=80).width == 80

    def test_default_width(self) -> None:
        assert create_console().width == 100


class TestTheme:
    def test_alert_styles_present(self) -> None:
        for name in ("sg.ok", "sg.error", "sg.alert", "sg.elapsed", "sg.opcode.reported"):
            assert name in SG_THEME.styles
