"""Kennisbank: website and document knowledge base with hybrid retrieval."""

__version__ = "0.1.0"
