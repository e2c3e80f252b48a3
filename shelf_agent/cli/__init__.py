"""Command line interface for Shelf Agent."""
