import sys

from tidysurvey.cli import main

sys.exit(main())
