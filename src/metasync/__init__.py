"""metasync - keeps a search index synchronized with AVU metadata."""

__version__ = "0.1.0"
