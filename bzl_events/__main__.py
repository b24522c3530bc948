import sys

from bzl_events.cli import main

sys.exit(main())
