#!/usr/bin/env python3
"""
Entry point for the release kit CLI.

Run with: python -m deploy_tool
"""

from .cli import cli

if __name__ == '__main__':
    cli(prog_name="release-kit")
