#!/usr/bin/env python3
"""
replay-sandbox - Main Entry Point

Runs the API server with default settings, so `python main.py` works from a
checkout without installing the package.

Usage:
    python main.py                       # Serve the API on 127.0.0.1:8000
    python main.py run script.py         # Any replay-sandbox subcommand
    python main.py --help                # Show help
"""

import sys

from replay_sandbox.main import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:] or ["serve"]))
