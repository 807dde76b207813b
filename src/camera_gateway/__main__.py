"""``python -m camera_gateway``."""

import sys

from camera_gateway.cli import main

sys.exit(main())
