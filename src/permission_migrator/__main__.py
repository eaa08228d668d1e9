"""Allow ``python -m permission_migrator``."""

import sys

from permission_migrator.cli import main

sys.exit(main())
