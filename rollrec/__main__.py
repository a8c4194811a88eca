"""Allow running as ``python -m rollrec``."""

from .cli import app

app()
