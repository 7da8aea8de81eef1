"""Rebuild Cursor chat history from its local SQLite stores."""

__version__ = "0.1.0"
