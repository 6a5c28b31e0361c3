#!/usr/bin/env python3
"""Run the checklist harness from a checkout, without installing the package."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from run_checklist import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
