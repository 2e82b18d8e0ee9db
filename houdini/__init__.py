"""Houdini: abductive inference of candidate program annotations."""

__version__ = "0.1.0"
