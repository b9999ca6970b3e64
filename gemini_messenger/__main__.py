"""
Entry point for running Gemini Messenger as a module
using `python -m gemini_messenger`.
"""

import sys
from .gemini_messenger import main

if __name__ == "__main__":
    # click parses sys.argv itself
    sys.exit(main())
