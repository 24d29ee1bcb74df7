"""UI package exports for the CLI and its plain-text rendering."""

from layered_sandbox.ui.cli import CLIError, build_parser, compile_launch, run_cli
from layered_sandbox.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "compile_launch",
    "create_renderer",
    "run_cli",
]
