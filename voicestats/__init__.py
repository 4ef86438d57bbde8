"""Voice channel activity tracking and statistics."""
