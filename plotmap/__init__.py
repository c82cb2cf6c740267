"""Georeferenced image-overlay alignment for project maps."""

__version__ = "0.1.0"
