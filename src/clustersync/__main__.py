"""Entry point for running clustersync via python -m clustersync"""

import sys

if sys.version_info < (3, 10):
    print(
        f"clustersync requires Python 3.10+; found {sys.version.split()[0]}",
        file=sys.stderr,
    )
    sys.exit(1)

from .cli import main

if __name__ == "__main__":
    main()
