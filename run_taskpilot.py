#!/usr/bin/env python
"""
Convenience wrapper for running taskpilot from the command line.

This script allows you to run taskpilot without needing to install it or use 'python -m'.

Usage:
    python run_taskpilot.py "Your task here"
    python run_taskpilot.py "Open the pricing page" --url https://example.com --headless
"""

import sys
from pathlib import Path

# Add src directory to Python path so we can import taskpilot
src_dir = Path(__file__).parent / "src"
sys.path.insert(0, str(src_dir))

from taskpilot.cli import main

if __name__ == "__main__":
    sys.exit(main())
