"""Device-side command and state service."""

__version__ = "0.1.0"
