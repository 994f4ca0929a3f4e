"""Allow ``python -m patina`` as a shorthand for ``python -m patina.run``."""
import sys

from .run import main

sys.exit(main())
