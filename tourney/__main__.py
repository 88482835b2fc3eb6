"""Run the tournament engine CLI: python -m tourney"""

import sys

from .cli import main

sys.exit(main())
