import sys

from bindscrape.cli import main

sys.exit(main())
