"""Tests for typed identifier NewTypes."""

from lorevault_core.models.identifiers import ChunkId, DocumentId, SourceId


class TestIdentifiers:
    def test_document_id_is_str(self) -> None:
        did = DocumentId("doc-uuid")
        assert isinstance(did, str)
        assert did == "doc-uuid"

    def test_chunk_id_is_str(self) -> None:
        assert isinstance(ChunkId("chunk-uuid"), str)

    def test_source_id_is_str(self) -> None:
        assert SourceId("python-docs") == "python-docs"
