"""Typed identifiers: NewType wrappers over str to prevent stringly-typed bugs."""

from typing import NewType

DocumentId = NewType("DocumentId", str)
ChunkId = NewType("ChunkId", str)
SourceId = NewType("SourceId", str)
