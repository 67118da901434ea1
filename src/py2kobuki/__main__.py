"""
Entry Point - Module Execution

Runs the sensor monitor when the package is executed as a module:
    python -m py2kobuki
"""

import sys

from py2kobuki.cli import main

if __name__ == "__main__":
    sys.exit(main())
