import sys

from devicescrape.cli import main

sys.exit(main())
