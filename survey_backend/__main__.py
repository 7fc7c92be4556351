import sys

from survey_backend.cli import main

sys.exit(main())
