#!/usr/bin/env python3

"""Compatibility wrapper.

The project is packaged under `src/flynn_dns`. This wrapper allows running
`./flynn-dns.py` straight from a checkout without installing it.

Note: This file intentionally tweaks sys.path before importing the package.
"""

import sys
from pathlib import Path


sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from flynn_dns.cli import main  # noqa: E402


if __name__ == "__main__":
    main()
