"""Redis key-value sink for stream-processing rows."""

__version__ = "0.1.0"
