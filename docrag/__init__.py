"""Retrieval-augmented question answering over sectioned HTML documents."""

__version__ = "0.1.0"
