"""Bidirectional synchronisation between outline documents and Trello boards."""

__version__ = "0.1.0"
