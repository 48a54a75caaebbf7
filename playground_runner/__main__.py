"""Allow ``python -m playground_runner``."""

from .cli import main

raise SystemExit(main())
