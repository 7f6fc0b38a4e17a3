import sys

from eip7702_harness.cli import main

if __name__ == "__main__":
    sys.exit(main())
