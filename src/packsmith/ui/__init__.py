"""UI package exports for the CLI and its plain-text rendering."""

from packsmith.ui.cli import CLIError, build_parser, run_cli
from packsmith.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
