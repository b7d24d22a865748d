"""Allow ``python -m bookresolver.cli`` execution."""

from bookresolver.cli.commands import main

main()
