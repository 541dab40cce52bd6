"""Configuration-driven pharmacy availability scanner."""

from .version import __version__

__all__ = ["__version__"]
