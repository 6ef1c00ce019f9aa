"""Allow ``python -m capture_encoder`` to launch the server."""

from __future__ import annotations

import sys

from capture_encoder.cli import main


if __name__ == "__main__":
    sys.exit(main())
