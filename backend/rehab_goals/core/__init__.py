"""Core module for configuration, errors, logging and locking."""
