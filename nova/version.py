"""Version information for Nova inventory."""

__version__ = "1.4.0"
