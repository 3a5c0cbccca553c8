"""Allow running with ``python -m nestdeploy``."""

from nestdeploy.cli.main import main

main()
