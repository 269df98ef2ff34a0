"""Core utilities: configuration, logging, exceptions."""
