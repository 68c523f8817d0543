import sys

from tags_sync.cli import main

sys.exit(main())
