import sys

from cmdpipe.cli import main

sys.exit(main())
