"""Shelf Agent - resolve shelf photographs into deduplicated catalog records."""

__version__ = "0.1.0"
