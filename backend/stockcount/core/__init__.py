"""Core utilities: configuration, errors, identity."""
