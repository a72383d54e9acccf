from __future__ import annotations

import logging
import sys

from .ui.cli import run_cli


def main() -> int:
    """``storefront-crawler`` / ``python -m storefront_crawler`` entry point."""
    try:
        return run_cli(sys.argv[1:])
    except KeyboardInterrupt:
        # State is saved by the engine's finally block before we get here.
        logging.getLogger("storefront_crawler").warning("Interrupted, processed ids were saved")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
