"""rollrec - screen recording with size-based rollover."""

__version__ = "0.1.0"
