"""FastAPI web layer for Shelf Agent."""
