"""
Entry point for running the app as a module: python -m edugrade
"""

import sys
from edugrade.cli import main

if __name__ == "__main__":
    sys.exit(main())
