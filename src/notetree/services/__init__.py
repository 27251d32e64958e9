"""Service layer for the note tree core."""
