import sys

from numerai_tui.cli import main

sys.exit(main())
