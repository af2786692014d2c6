import sys

from mcp_stdio.cli import main

sys.exit(main())
