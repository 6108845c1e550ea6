#!/usr/bin/env python3
"""
Run one vardb query from the command line
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vardb.cli.utils import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
