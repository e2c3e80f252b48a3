"""External service integrations for Shelf Agent."""
