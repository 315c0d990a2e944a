"""soundtrack - streaming history sync and listening statistics."""

__version__ = "0.1.0"
