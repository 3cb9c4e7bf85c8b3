"""Data package archive manager."""

__version__ = "1.0.0"
