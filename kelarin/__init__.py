"""SQLite repositories and chat services for a home-service marketplace."""

__version__ = "0.1.0"