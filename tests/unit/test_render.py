"""Unit tests for CLI rendering and color handling."""

from __future__ import annotations

import io

import pytest

from release_orchestrator.ui.render import CLIRenderer, create_renderer


class _TTY(io.StringIO):
    def isatty(self) -> bool:
        return True


@pytest.fixture(autouse=True)
def _no_ambient_no_color(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NO_COLOR", raising=False)


def test_table_aligns_columns_without_color() -> None:
    stream = io.StringIO()
    renderer = create_renderer(stream=stream)

    renderer.table(
        ["Stage", "Status"],
        [["checkout", "passed"], ["verify_container", "failed"]],
        title="Stages:",
        status_column=1,
    )

    assert stream.getvalue().splitlines() == [
        "",
        "Stages:",
        "  Stage             Status",
        "  ----------------  ------",
        "  checkout          passed",
        "  verify_container  failed",
    ]


def test_empty_table_prints_nothing() -> None:
    stream = io.StringIO()
    CLIRenderer(stream=stream).table(["Stage"], [])
    assert stream.getvalue() == ""


def test_status_color_on_tty() -> None:
    renderer = CLIRenderer(stream=_TTY())

    assert renderer.status("failed") == "\x1b[31mfailed\x1b[0m"
    assert renderer.status("passed").startswith("\x1b[32m")
    assert renderer.status("checkout") == "checkout"


def test_color_disabled_by_flag_or_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    assert CLIRenderer(stream=_TTY(), no_color=True).status("failed") == "failed"

    monkeypatch.setenv("NO_COLOR", "1")
    assert CLIRenderer(stream=_TTY()).status("failed") == "failed"


def test_colored_status_cell_keeps_padding() -> None:
    stream = _TTY()
    CLIRenderer(stream=stream).table(
        ["Status", "Stage"], [["passed", "lint"], ["failed", "build"]], status_column=0
    )

    lines = stream.getvalue().splitlines()
    assert lines[2] == "  \x1b[32mpassed\x1b[0m  lint"


def test_key_values_and_items() -> None:
    stream = io.StringIO()
    renderer = CLIRenderer(stream=stream, verbose=True)

    renderer.kv("Image", "registry.example.com/webapp:42-0123456")
    renderer.section("Warnings:")
    renderer.items(["lint reported issues"])

    assert renderer.verbose is True
    assert stream.getvalue() == (
        "Image: registry.example.com/webapp:42-0123456\n"
        "\nWarnings:\n"
        "  - lint reported issues\n"
    )
