"""Allow ``python -m album_organizer``."""

import sys

from .cli.main import main

sys.exit(main())
