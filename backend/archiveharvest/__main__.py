import sys

from archiveharvest.cli import main

sys.exit(main())
