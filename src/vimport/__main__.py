"""Allow ``python -m vimport``."""

from .cli import run

run()
