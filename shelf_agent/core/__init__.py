"""Core domain types and pure helpers for Shelf Agent."""
