#!/usr/bin/env python3
"""
Main entry point for the Typer-based Sibyl CLI.

This delegates to the UI layer in sibyl.ui.cli to keep the
console script mapping stable.
"""

from sibyl.ui.cli import run as sibyl


if __name__ == "__main__":
    sibyl()
