#!/usr/bin/env python3
"""
climalog - Main Entry Point

Syncs the sensor's stored history into the binary log and renders reports.

Usage:
    python main.py --help                 # Show help
    python main.py sync                   # Append new records from the sensor
    python main.py report                 # Write the HTML report
    python main.py show                   # Print monthly extrema
    python main.py config                 # Show effective configuration

Environment Setup:
    Copy and configure the environment file:
    cp .env.sample .env

Requirements:
    - Python 3.9+
    - Bluetooth adapter available (sync only)
"""

import sys
from pathlib import Path

from climalog.cli.menu import cli


def check_environment():
    """Check if the environment is properly set up."""
    issues = []

    if sys.version_info < (3, 9):
        issues.append(f"Python 3.9+ required, found {sys.version_info.major}.{sys.version_info.minor}")

    if not Path(".env").exists():
        print("Note: .env file not found, using defaults and system environment")

    return issues


def main():
    """Main entry point with environment validation."""
    issues = check_environment()
    if issues:
        print("Environment Issues Found:")
        for issue in issues:
            print(f"   - {issue}")
        sys.exit(1)

    try:
        cli()
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
