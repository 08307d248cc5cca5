import sys

from measurebridge.cli import main

sys.exit(main())
