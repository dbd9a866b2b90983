"""Run the loginflow CLI with ``python -m loginflow``."""

import sys

from .cli import main


sys.exit(main())
