"""Allow ``python -m apiscan``."""

from apiscan.cli import main

main()
