"""Entry point for ``python -m orthanc_cli``."""

import sys

from orthanc_cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
