import sys

from capx.main import main

sys.exit(main())
