"""Core utilities: logging, run context and the exception hierarchy."""
