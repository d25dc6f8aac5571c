"""
CLI tools for Kolam.

This module provides the `kolam` command-line front-end, which works on the
local database without a running server.
"""

from .kolam_cli import KolamCLI

__all__ = ["KolamCLI"]
