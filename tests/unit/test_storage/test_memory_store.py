"""Tests for the in-process vector store."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from lorevault_core.models.entities import Chunk, Document, ExternalChunk, ExternalDocument
from lorevault_core.models.enums import PromotionLevel
from lorevault_core.models.identifiers import ChunkId, DocumentId, SourceId
from lorevault_core.models.values import EmbeddingVector, SearchFilters, TenantContext, TenantScope
from lorevault_storage.exceptions import (
    DimensionMismatchError,
    InvalidEntityError,
    MissingTenantError,
)
from lorevault_storage.memory import InMemoryVectorStore, cosine_similarities

DIMS = 4
HASH = "0" * 64


def _vec(*values: float) -> EmbeddingVector:
    return EmbeddingVector(values=list(values), dimensions=len(values), model_name="test")


def _unit(index: int) -> EmbeddingVector:
    values = [0.0] * DIMS
    values[index] = 1.0
    return _vec(*values)


def _make_doc(
    tenant: TenantContext,
    doc_id: str = "doc-1",
    path: str = "docs/a.md",
    embedding: EmbeddingVector | None = None,
    level: PromotionLevel = PromotionLevel.STANDARD,
    doc_type: str = "doc",
    line_count: int = 2,
) -> Document:
    now = datetime.now(UTC)
    return Document(
        id=DocumentId(doc_id),
        tenant=tenant,
        relative_path=path,
        title=path,
        doc_type=doc_type,
        promotion_level=level,
        content_hash=HASH,
        char_count=10,
        line_count=line_count,
        embedding=embedding or _unit(0),
        created_at=now,
        updated_at=now,
    )


def _make_chunks(document: Document, *embeddings: EmbeddingVector) -> list[Chunk]:
    """One single-line chunk per embedding; defaults to one per document line."""
    vectors = embeddings or tuple(_unit(0) for _ in range(document.line_count))
    now = datetime.now(UTC)
    return [
        Chunk(
            id=ChunkId(f"{document.id}-c{i}"),
            document_id=document.id,
            tenant=document.tenant,
            promotion_level=document.promotion_level,
            chunk_index=i,
            header_path=f"Section {i}",
            start_line=i + 1,
            end_line=i + 1,
            content=f"line {i}",
            embedding=vector,
            created_at=now,
        )
        for i, vector in enumerate(vectors)
    ]


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore(DIMS)


class TestCosineSimilarities:
    def test_identical_and_orthogonal(self) -> None:
        sims = cosine_similarities([1.0, 0.0], [[2.0, 0.0], [0.0, 3.0]])
        assert sims.tolist() == pytest.approx([1.0, 0.0])

    def test_zero_vector_scores_zero(self) -> None:
        sims = cosine_similarities([1.0, 0.0], [[0.0, 0.0]])
        assert sims.tolist() == [0.0]

    def test_empty(self) -> None:
        assert cosine_similarities([1.0], []).size == 0


class TestUpsertAndGet:
    async def test_round_trip(self, store: InMemoryVectorStore, tenant: TenantContext) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc))

        assert await store.get(doc.id, tenant) == doc
        assert await store.get_by_path("docs/a.md", tenant) == doc
        chunks = await store.get_chunks(doc.id, tenant)
        assert [c.chunk_index for c in chunks] == [0, 1]

    async def test_get_with_chunks(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc))
        found = await store.get_with_chunks("docs/a.md", tenant)
        assert found is not None
        assert found[0].id == doc.id
        assert len(found[1]) == 2

    async def test_upsert_replaces_whole_chunk_set(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=3)
        await store.upsert(doc, _make_chunks(doc))
        shorter = doc.model_copy(update={"line_count": 1})
        await store.upsert(shorter, _make_chunks(shorter))
        assert len(await store.get_chunks(doc.id, tenant)) == 1

    async def test_upsert_keeps_created_at(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc))
        later = doc.model_copy(update={"created_at": datetime(2030, 1, 1, tzinfo=UTC)})
        await store.upsert(later, _make_chunks(later))
        stored = await store.get(doc.id, tenant)
        assert stored is not None
        assert stored.created_at == doc.created_at

    async def test_second_document_on_same_path_rejected(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        first = _make_doc(tenant, doc_id="doc-1")
        await store.upsert(first, _make_chunks(first))
        second = _make_doc(tenant, doc_id="doc-2")
        with pytest.raises(InvalidEntityError, match="occupies this path"):
            await store.upsert(second, _make_chunks(second))

    async def test_same_path_in_other_tenant_allowed(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        first = _make_doc(tenant, doc_id="doc-1")
        second = _make_doc(other_tenant, doc_id="doc-2")
        await store.upsert(first, _make_chunks(first))
        await store.upsert(second, _make_chunks(second))
        assert (await store.get_by_path("docs/a.md", other_tenant)) == second

    async def test_id_owned_by_other_tenant_rejected(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc))
        hijack = _make_doc(other_tenant, path="docs/b.md")
        with pytest.raises(MissingTenantError):
            await store.upsert(hijack, _make_chunks(hijack))

    async def test_wrong_dimensions_rejected(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, embedding=_vec(1.0, 0.0))
        with pytest.raises(DimensionMismatchError):
            await store.upsert(doc, _make_chunks(doc))
        assert await store.get(doc.id, tenant) is None

    async def test_chunk_with_wrong_dimensions_rejected(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=1)
        with pytest.raises(DimensionMismatchError):
            await store.upsert(doc, _make_chunks(doc, _vec(1.0, 0.0, 0.0)))

    async def test_chunk_level_must_match_document(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=1)
        chunks = [_make_chunks(doc)[0].with_promotion(PromotionLevel.PINNED)]
        with pytest.raises(InvalidEntityError, match="promotion level"):
            await store.upsert(doc, chunks)

    async def test_chunk_tenant_must_match_document(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=1)
        chunks = [_make_chunks(doc)[0].model_copy(update={"tenant": other_tenant})]
        with pytest.raises(MissingTenantError):
            await store.upsert(doc, chunks)

    async def test_gap_in_chunks_rejected(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=3)
        chunks = _make_chunks(doc, _unit(0), _unit(1))
        with pytest.raises(InvalidEntityError, match="cover the whole document"):
            await store.upsert(doc, chunks)

    async def test_empty_chunk_set_rejected(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        with pytest.raises(InvalidEntityError, match="at least one chunk"):
            await store.upsert(_make_doc(tenant), [])

    async def test_incomplete_tenant_rejected(self, store: InMemoryVectorStore) -> None:
        broken = TenantContext.model_construct(project="atlas", branch="", workspace_hash="w")
        with pytest.raises(MissingTenantError):
            await store.get_by_path("docs/a.md", broken)


class TestTenantIsolation:
    async def test_reads_never_cross_tenants(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc))

        assert await store.get(doc.id, other_tenant) is None
        assert await store.get_by_path("docs/a.md", other_tenant) is None
        assert await store.get_chunks(doc.id, other_tenant) == []
        assert await store.search(_unit(0).values, other_tenant, 10) == []
        assert await store.search_chunks(_unit(0).values, other_tenant, 10) == []

    async def test_delete_in_other_tenant_is_noop(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc))
        assert await store.delete(doc.id, other_tenant) == (0, 0)
        assert await store.get(doc.id, tenant) is not None


class TestSearch:
    async def test_ranked_by_similarity(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        near = _make_doc(tenant, doc_id="near", path="near.md", embedding=_vec(1.0, 0.1, 0, 0))
        far = _make_doc(tenant, doc_id="far", path="far.md", embedding=_vec(0.1, 1.0, 0, 0))
        for doc in (far, near):
            await store.upsert(doc, _make_chunks(doc))

        results = await store.search([1.0, 0.0, 0.0, 0.0], tenant, 10)
        assert [r.document.id for r in results] == ["near", "far"]
        assert results[0].similarity > results[1].similarity

    async def test_k_limits_results(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        for i in range(5):
            doc = _make_doc(tenant, doc_id=f"d{i}", path=f"d{i}.md")
            await store.upsert(doc, _make_chunks(doc))
        assert len(await store.search(_unit(0).values, tenant, 3)) == 3

    async def test_query_dimension_mismatch(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        with pytest.raises(DimensionMismatchError):
            await store.search([1.0, 0.0], tenant, 10)

    async def test_filters_by_doc_type_and_level(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        adr = _make_doc(tenant, doc_id="adr", path="adr.md", doc_type="adr")
        pinned = _make_doc(tenant, doc_id="pin", path="pin.md", level=PromotionLevel.PINNED)
        for doc in (adr, pinned):
            await store.upsert(doc, _make_chunks(doc))

        by_type = await store.search(
            _unit(0).values, tenant, 10, filters=SearchFilters(doc_types=frozenset({"adr"}))
        )
        assert [r.document.id for r in by_type] == ["adr"]

        by_level = await store.search_chunks(
            _unit(0).values, tenant, 10, filters=SearchFilters.for_levels(PromotionLevel.PINNED)
        )
        assert {r.document.id for r in by_level} == {"pin"}

    async def test_chunk_search_carries_parent(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc, _unit(1), _unit(2)))
        results = await store.search_chunks(_unit(2).values, tenant, 1)
        assert results[0].chunk.chunk_index == 1
        assert results[0].document == doc
        assert results[0].similarity == pytest.approx(1.0)

    async def test_tie_at_the_cut_keeps_higher_tier(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        for doc_id, level in (
            ("a", PromotionLevel.STANDARD),
            ("b", PromotionLevel.ELEVATED),
            ("c", PromotionLevel.PINNED),
        ):
            doc = _make_doc(tenant, doc_id=doc_id, path=f"{doc_id}.md", level=level)
            await store.upsert(doc, _make_chunks(doc))

        top = await store.search(_unit(0).values, tenant, 1)
        assert [r.document.id for r in top] == ["c"]
        top_two = await store.search(_unit(0).values, tenant, 2)
        assert [r.document.id for r in top_two] == ["c", "b"]
        chunks = await store.search_chunks(_unit(0).values, tenant, 1)
        assert [r.document.id for r in chunks] == ["c"]

    async def test_tie_at_the_cut_keeps_most_recent(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        base = datetime.now(UTC)
        for offset, doc_id in ((0, "old"), (2, "newest"), (1, "newer")):
            doc = _make_doc(tenant, doc_id=doc_id, path=f"{doc_id}.md").model_copy(
                update={"updated_at": base + timedelta(days=offset)}
            )
            await store.upsert(doc, _make_chunks(doc))

        top = await store.search(_unit(0).values, tenant, 1)
        assert [r.document.id for r in top] == ["newest"]

    async def test_similarity_still_outranks_tier(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        near = _make_doc(tenant, doc_id="near", path="near.md")
        pinned = _make_doc(
            tenant,
            doc_id="pin",
            path="pin.md",
            embedding=_vec(1.0, 1.0, 0, 0),
            level=PromotionLevel.PINNED,
        )
        for doc in (pinned, near):
            await store.upsert(doc, _make_chunks(doc))

        top = await store.search(_unit(0).values, tenant, 1)
        assert [r.document.id for r in top] == ["near"]

    async def test_zero_k_returns_nothing(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant)
        await store.upsert(doc, _make_chunks(doc))
        assert await store.search(_unit(0).values, tenant, 0) == []


class TestPromotion:
    async def test_document_and_chunks_change_together(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=3)
        await store.upsert(doc, _make_chunks(doc))

        change = await store.set_promotion(doc.id, tenant, PromotionLevel.PINNED)

        assert change is not None
        assert change.previous_level is PromotionLevel.STANDARD
        assert change.chunks_updated == 3
        found = await store.get_with_chunks("docs/a.md", tenant)
        assert found is not None
        assert found[0].promotion_level is PromotionLevel.PINNED
        assert {c.promotion_level for c in found[1]} == {PromotionLevel.PINNED}

    async def test_missing_document(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        assert await store.set_promotion(DocumentId("nope"), tenant, PromotionLevel.PINNED) is None

    async def test_concurrent_readers_never_see_mixed_levels(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=4)
        await store.upsert(doc, _make_chunks(doc))
        levels = list(PromotionLevel)
        done = asyncio.Event()

        async def flipper() -> None:
            for i in range(60):
                await store.set_promotion(doc.id, tenant, levels[i % len(levels)])
                await asyncio.sleep(0)
            done.set()

        async def reader() -> int:
            reads = 0
            while not done.is_set():
                found = await store.get_with_chunks("docs/a.md", tenant)
                assert found is not None
                assert {c.promotion_level for c in found[1]} == {found[0].promotion_level}
                for hit in await store.search_chunks(_unit(0).values, tenant, 10):
                    assert hit.chunk.promotion_level is hit.document.promotion_level
                reads += 1
                await asyncio.sleep(0)
            return reads

        results = await asyncio.gather(flipper(), reader(), reader())
        assert all(reads > 0 for reads in results[1:])


class TestDelete:
    async def test_delete_counts_chunks(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=3)
        await store.upsert(doc, _make_chunks(doc))
        assert await store.delete(doc.id, tenant) == (1, 3)
        assert await store.get_chunks(doc.id, tenant) == []

    async def test_scope_delete_by_branch(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        keep = _make_doc(tenant, doc_id="keep")
        drop = _make_doc(other_tenant, doc_id="drop")
        for doc in (keep, drop):
            await store.upsert(doc, _make_chunks(doc))

        scope = TenantScope(project="atlas", branch=other_tenant.branch)
        assert await store.count_scope(scope) == (1, 2)
        assert await store.delete_scope(scope) == (1, 2)
        assert await store.get(DocumentId("keep"), tenant) is not None
        assert await store.get(DocumentId("drop"), other_tenant) is None

    async def test_scope_delete_whole_project(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        for t, doc_id in ((tenant, "a"), (other_tenant, "b")):
            doc = _make_doc(t, doc_id=doc_id)
            await store.upsert(doc, _make_chunks(doc))
        assert await store.delete_scope(TenantScope(project="atlas")) == (2, 4)


class TestExternalCollection:
    def _external(self, tenant: TenantContext, source: str = "python-docs") -> ExternalDocument:
        now = datetime.now(UTC)
        return ExternalDocument(
            id=DocumentId(f"ext-{source}"),
            tenant=tenant,
            source_id=SourceId(source),
            relative_path="library/asyncio.md",
            title="asyncio",
            content_hash=HASH,
            char_count=10,
            line_count=1,
            embedding=_unit(0),
            created_at=now,
            updated_at=now,
        )

    def _external_chunk(self, document: ExternalDocument) -> ExternalChunk:
        return ExternalChunk(
            id=ChunkId(f"{document.id}-c0"),
            document_id=document.id,
            tenant=document.tenant,
            chunk_index=0,
            start_line=1,
            end_line=1,
            content="event loop",
            embedding=_unit(0),
            created_at=document.created_at,
        )

    async def test_kept_apart_from_documents(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        ext = self._external(tenant)
        await store.upsert_external(ext, [self._external_chunk(ext)])

        assert await store.search(_unit(0).values, tenant, 10) == []
        hits = await store.search_external(_unit(0).values, tenant, 10)
        assert [h.document.id for h in hits] == [ext.id]
        found = await store.get_external_by_path(ext.source_id, ext.relative_path, tenant)
        assert found == ext

    async def test_source_filter(self, store: InMemoryVectorStore, tenant: TenantContext) -> None:
        for source in ("python-docs", "rust-book"):
            ext = self._external(tenant, source)
            await store.upsert_external(ext, [self._external_chunk(ext)])
        hits = await store.search_external(
            _unit(0).values, tenant, 10, source_ids=frozenset({"rust-book"})
        )
        assert [h.document.source_id for h in hits] == ["rust-book"]

    async def test_scope_delete(self, store: InMemoryVectorStore, tenant: TenantContext) -> None:
        ext = self._external(tenant)
        await store.upsert_external(ext, [self._external_chunk(ext)])
        assert await store.delete_external_scope(TenantScope.of(tenant)) == (1, 1)

    async def test_scope_delete_including_external(
        self, store: InMemoryVectorStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        doc = _make_doc(tenant, line_count=2)
        await store.upsert(doc, _make_chunks(doc))
        ext = self._external(tenant)
        await store.upsert_external(ext, [self._external_chunk(ext)])
        kept = self._external(other_tenant, "rust-book")
        await store.upsert_external(kept, [self._external_chunk(kept)])

        scope = TenantScope.of(tenant)
        assert await store.delete_scope(scope, include_external=True) == (2, 3)
        assert await store.get(doc.id, tenant) is None
        assert await store.search_external(_unit(0).values, tenant, 10) == []
        assert len(await store.search_external(_unit(0).values, other_tenant, 10)) == 1

    async def test_plain_scope_delete_leaves_external(
        self, store: InMemoryVectorStore, tenant: TenantContext
    ) -> None:
        ext = self._external(tenant)
        await store.upsert_external(ext, [self._external_chunk(ext)])
        assert await store.delete_scope(TenantScope.of(tenant)) == (0, 0)
        assert len(await store.search_external(_unit(0).values, tenant, 10)) == 1


class TestMaintenanceHooks:
    async def test_no_bloat_and_nothing_to_rebuild(self, store: InMemoryVectorStore) -> None:
        assert await store.bloat_ratio() == 0.0
        assert await store.rebuild_indexes() == []

    def test_dimensions_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            InMemoryVectorStore(0)
