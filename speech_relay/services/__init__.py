"""Service managers for the speech relay bot."""
