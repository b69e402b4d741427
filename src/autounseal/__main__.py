"""Allow ``python -m autounseal``."""

from .cli import main

main()
