"""Allow ``python -m idbridge``."""

import sys

from .cli import main


sys.exit(main())
