"""
Root entry point for moodtrack.
Bootstraps the package from a source checkout and runs the CLI.
"""

import sys
import os

# Ensure the project root is in python path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from moodtrack.main import main

if __name__ == "__main__":
    main()
