# src/kpdev/cli/__init__.py
"""
kpdev CLI commands.
"""

from kpdev.cli.main import main, build_parser

__all__ = ["main", "build_parser"]
