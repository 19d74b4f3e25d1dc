"""Robot description dependency resolver."""

__version__ = "0.1.0"
