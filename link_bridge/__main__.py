import sys

from link_bridge.cli import main

sys.exit(main())
