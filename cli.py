#!/usr/bin/env python3
"""Run the copy-trading bot CLI from a source checkout"""

import sys

from mirrorbot.cli import main


if __name__ == "__main__":
    sys.exit(main())
