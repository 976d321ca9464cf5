"""Semantic search over LLM assistant conversation logs."""

__version__ = "0.1.0"
