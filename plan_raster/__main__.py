"""
Main entry point for the package.

Allows running: python -m plan_raster <command>
"""

import sys
from plan_raster.cli import main

if __name__ == "__main__":
    sys.exit(main())
