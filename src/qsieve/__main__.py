import sys

from qsieve.cli import main

if __name__ == "__main__":
    sys.exit(main())
