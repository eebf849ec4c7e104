"""Lorevault Retrieval: embedding, indexing, ranking and the tenant-bound gateway."""

__version__ = "0.1.0"
