# src/deployflow/__main__.py
import sys

from deployflow.cli import main

raise SystemExit(main(sys.argv[1:]))
