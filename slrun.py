#!/usr/bin/env python3
"""sparklab CLI entrypoint -- run without pip install.

Usage:
    python slrun.py generate
    python slrun.py --help

Works on Linux, macOS, and Windows without requiring pip install.
"""

import sys
from pathlib import Path

# Add src/ to import path so the sparklab package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from sparklab.cli import app

if __name__ == "__main__":
    app()
