"""Embedding generation queue worker for candidates and job postings."""

__version__ = "0.1.0"
