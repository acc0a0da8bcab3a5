#!/usr/bin/env python3
# CUI // SP-CTI
"""Allow ``python -m proprion``."""

import sys

from proprion.cli import main

sys.exit(main())
