"""Contact Identity: resolve fragmented contact records into one customer identity."""

__version__ = "0.1.0"
