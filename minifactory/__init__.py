"""MINIFACTORY: the mini-app deployment worker."""

from minifactory.identity import __version__

__all__ = ["__version__"]
