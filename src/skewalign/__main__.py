"""Allow ``python -m skewalign``."""

import sys

from skewalign.cli import main

if __name__ == "__main__":
    sys.exit(main())
