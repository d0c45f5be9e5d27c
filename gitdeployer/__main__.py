"""Allow ``python -m gitdeployer``."""

from gitdeployer.cli.app import main

main()
