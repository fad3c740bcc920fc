"""Persistence layer for whiteboard documents and dashboard metadata."""

__version__ = "0.1.0"
