"""Allow `python -m crev`."""

from crev.cli import main

main()
