"""
Entry point for running Workflow Studio as a module.

Usage:
    python -m workflow_studio
"""

import sys

from workflow_studio.main import main

if __name__ == "__main__":
    sys.exit(main())
