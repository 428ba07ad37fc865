"""Runtime-defined tables with generic CRUD, search and pagination."""

__version__ = "1.0.0"
