"""Allow running as: python -m filerelay"""

import sys

from .cli import main

sys.exit(main())
