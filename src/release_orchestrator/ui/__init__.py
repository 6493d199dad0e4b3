"""UI package exports for the CLI and its rendering."""

from release_orchestrator.ui.cli import CLIError, build_parser, run_cli
from release_orchestrator.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
