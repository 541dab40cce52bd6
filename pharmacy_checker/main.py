from __future__ import annotations

import sys
from typing import List, Optional

from .ui.cli import run_cli


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point for ``pharmacy-checker`` and ``python -m pharmacy_checker``."""
    return run_cli(sys.argv[1:] if argv is None else argv)


if __name__ == "__main__":
    raise SystemExit(main())
