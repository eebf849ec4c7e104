"""Repository layer for lorevault-storage."""

from lorevault_storage.repositories.chunk import ChunkRepository
from lorevault_storage.repositories.document import DocumentRepository
from lorevault_storage.repositories.external import ExternalRepository

__all__ = ["ChunkRepository", "DocumentRepository", "ExternalRepository"]
