"""Entry point for vmdeck."""

import sys

from vmdeck.cli import main

if __name__ == "__main__":
    sys.exit(main())
