"""Serialize a repository into priority-ordered, size-bounded text chunks."""

__version__ = "0.1.0"
