"""Allow ``python -m news_relay``."""

import sys

from news_relay.cli import main

sys.exit(main())
