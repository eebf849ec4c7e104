"""Lorevault Core: domain model, chunking, validation and session primitives."""

__version__ = "0.1.0"
