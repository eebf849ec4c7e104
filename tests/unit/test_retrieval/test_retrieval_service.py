"""Tests for RetrievalService over the in-memory store."""

import asyncio
import math
import re
from collections.abc import Sequence

import pytest

from lorevault_core.errors import DeadlineExceededError, InvalidDocTypeError, InvalidLevelError
from lorevault_core.models.enums import PromotionLevel
from lorevault_core.models.identifiers import SourceId
from lorevault_core.models.requests import ExternalSearchRequest, QueryRequest, SearchRequest
from lorevault_core.project import RetrievalOverrides
from lorevault_core.session import ActiveTenant
from lorevault_retrieval.config import RetrievalConfig
from lorevault_retrieval.embedding.adapter import EmbeddingAdapter
from lorevault_retrieval.indexing import DocumentIndexer
from lorevault_retrieval.retrieval import RetrievalService, deadline
from lorevault_storage.memory import InMemoryVectorStore

VOCABULARY = (
    "kafka",
    "consumer",
    "lag",
    "garden",
    "tomato",
    "billing",
    "invoice",
    "never",
    "force",
    "push",
    "network",
    "storage",
    "deploy",
    "restart",
    "asyncio",
)


class KeywordProvider:
    """One dimension per vocabulary word, so similarities are exact and collision free."""

    model_name = "keywords"

    def __init__(self, dimensions: int, delay: float = 0.0) -> None:
        self.dimensions = dimensions
        self.delay = delay

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self.dimensions
        for token in re.findall(r"[a-z]+", text.lower()):
            if token in VOCABULARY:
                values[VOCABULARY.index(token)] += 1.0
        norm = math.sqrt(sum(v * v for v in values))
        if norm == 0:
            values[-1] = 1.0
            return values
        return [v / norm for v in values]

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if self.delay:
            await asyncio.sleep(self.delay)
        return [self.vector(t) for t in texts]

    async def aclose(self) -> None:
        pass


CORPUS = {
    "guides/kafka.md": "# Kafka consumer lag\n\nKafka consumer lag grows when a consumer stalls.\n",
    "guides/garden.md": "# Garden\n\nTomato garden notes.\n",
    "guides/billing.md": (
        "---\npromotion_level: elevated\n---\n# Billing\n\nBilling invoice kafka export.\n"
    ),
    "rules/push.md": "---\npromotion_level: pinned\n---\n# Never force push\n\nNever force push.\n",
    "ops/restart.md": "---\ndoc_type: runbook\nservice: api\n---\n# Restart kafka\n",
}


@pytest.fixture
def embedder(dims: int) -> EmbeddingAdapter:
    return EmbeddingAdapter(KeywordProvider(dims), dims)


@pytest.fixture
def service(
    store: InMemoryVectorStore, embedder: EmbeddingAdapter, retrieval_config: RetrievalConfig
) -> RetrievalService:
    return RetrievalService(store, embedder, retrieval_config)


@pytest.fixture
async def corpus(
    store: InMemoryVectorStore,
    embedder: EmbeddingAdapter,
    retrieval_config: RetrievalConfig,
    active: ActiveTenant,
) -> DocumentIndexer:
    indexer = DocumentIndexer(store, embedder, retrieval_config)
    for path, content in CORPUS.items():
        await indexer.index(active, path, content)
    return indexer


class TestBuildFilters:
    def test_no_filters(self, service: RetrievalService) -> None:
        assert service.build_filters(SearchRequest(query="q")) is None

    def test_doc_types_checked_against_registry(
        self, service: RetrievalService, active: ActiveTenant
    ) -> None:
        filters = service.build_filters(
            SearchRequest(query="q", doc_types=["runbook"]), active.doc_types
        )
        assert filters is not None
        assert filters.doc_types == frozenset({"runbook"})
        with pytest.raises(InvalidDocTypeError):
            service.build_filters(SearchRequest(query="q", doc_types=["memo"]), active.doc_types)

    def test_levels_and_aliases(self, service: RetrievalService) -> None:
        filters = service.build_filters(
            SearchRequest(query="q", promotion_levels=["critical", "Standard"])
        )
        assert filters is not None
        assert filters.promotion_levels == {PromotionLevel.PINNED, PromotionLevel.STANDARD}

    def test_min_promotion(self, service: RetrievalService) -> None:
        filters = service.build_filters(SearchRequest(query="q", min_promotion="elevated"))
        assert filters is not None
        assert filters.promotion_levels == {PromotionLevel.ELEVATED, PromotionLevel.PINNED}

    def test_levels_intersect_with_minimum(self, service: RetrievalService) -> None:
        filters = service.build_filters(
            SearchRequest(
                query="q", promotion_levels=["standard", "pinned"], min_promotion="elevated"
            )
        )
        assert filters is not None
        assert filters.promotion_levels == {PromotionLevel.PINNED}

    def test_unknown_level(self, service: RetrievalService) -> None:
        with pytest.raises(InvalidLevelError):
            service.build_filters(SearchRequest(query="q", min_promotion="urgent"))


@pytest.mark.usefixtures("corpus")
class TestSearch:
    async def test_most_similar_first(
        self, service: RetrievalService, active: ActiveTenant
    ) -> None:
        response = await service.search(active.tenant, SearchRequest(query="kafka consumer lag"))

        assert response.hits[0].relative_path == "guides/kafka.md"
        assert response.total == len(response.hits) == len(CORPUS)
        scores = [hit.score for hit in response.hits]
        assert scores == sorted(scores, reverse=True)

    async def test_boosted_score_annotates_only(
        self, service: RetrievalService, active: ActiveTenant
    ) -> None:
        response = await service.search(active.tenant, SearchRequest(query="kafka consumer lag"))
        by_path = {hit.relative_path: hit for hit in response.hits}

        billing = by_path["guides/billing.md"]
        assert billing.promotion_level is PromotionLevel.ELEVATED
        assert billing.boosted_score == pytest.approx(billing.score * 1.5)
        assert by_path["guides/kafka.md"].boosted_score == pytest.approx(
            by_path["guides/kafka.md"].score
        )

    async def test_limit(self, service: RetrievalService, active: ActiveTenant) -> None:
        response = await service.search(active.tenant, SearchRequest(query="kafka", limit=2))
        assert len(response.hits) == 2

    async def test_doc_type_filter(self, service: RetrievalService, active: ActiveTenant) -> None:
        response = await service.search(
            active.tenant,
            SearchRequest(query="kafka", doc_types=["runbook"]),
            doc_types=active.doc_types,
        )
        assert [hit.relative_path for hit in response.hits] == ["ops/restart.md"]

    async def test_min_promotion_filter(
        self, service: RetrievalService, active: ActiveTenant
    ) -> None:
        response = await service.search(
            active.tenant, SearchRequest(query="kafka", min_promotion="promoted")
        )
        assert {hit.relative_path for hit in response.hits} == {
            "guides/billing.md",
            "rules/push.md",
        }

    async def test_other_branch_sees_nothing(
        self, service: RetrievalService, other_active: ActiveTenant
    ) -> None:
        response = await service.search(other_active.tenant, SearchRequest(query="kafka"))
        assert response.hits == []
        assert response.total == 0


@pytest.mark.usefixtures("corpus")
class TestQuery:
    async def test_pinned_first_then_relevant(
        self, service: RetrievalService, active: ActiveTenant
    ) -> None:
        response = await service.query(active.tenant, QueryRequest(query="kafka consumer lag"))

        assert [(s.relative_path, s.top_tier) for s in response.sources] == [
            ("rules/push.md", True),
            ("guides/kafka.md", False),
        ]
        assert [s.rank for s in response.sources] == [1, 2]
        assert response.top_tier_count == 1
        assert response.context.startswith("[1] rules/push.md > Never force push\n")
        assert "[2] guides/kafka.md > Kafka consumer lag\n" in response.context
        assert not response.truncated

    async def test_without_top_tier(self, service: RetrievalService, active: ActiveTenant) -> None:
        response = await service.query(
            active.tenant, QueryRequest(query="kafka consumer lag", include_top_tier=False)
        )
        assert [s.relative_path for s in response.sources] == ["guides/kafka.md"]
        assert response.top_tier_count == 0

    async def test_lower_min_similarity_admits_more(
        self, service: RetrievalService, active: ActiveTenant
    ) -> None:
        response = await service.query(
            active.tenant,
            QueryRequest(query="kafka consumer lag", include_top_tier=False, min_similarity=0.1),
        )
        paths = [s.relative_path for s in response.sources]
        assert paths[0] == "guides/kafka.md"
        assert "guides/billing.md" in paths
        assert "guides/garden.md" not in paths

    async def test_project_overrides(
        self, service: RetrievalService, active: ActiveTenant
    ) -> None:
        response = await service.query(
            active.tenant,
            QueryRequest(query="kafka consumer lag"),
            overrides=RetrievalOverrides(top_tier_cap=0, min_similarity=0.95),
        )
        assert [s.relative_path for s in response.sources] == ["guides/kafka.md"]

    async def test_nothing_relevant(self, service: RetrievalService, active: ActiveTenant) -> None:
        response = await service.query(
            active.tenant, QueryRequest(query="deploy network", include_top_tier=False)
        )
        assert response.sources == []
        assert response.context == ""

    async def test_context_budget(
        self, store: InMemoryVectorStore, embedder: EmbeddingAdapter, active: ActiveTenant
    ) -> None:
        tight = RetrievalService(store, embedder, RetrievalConfig(max_context_chars=100))
        response = await tight.query(active.tenant, QueryRequest(query="kafka consumer lag"))
        assert response.truncated
        assert len(response.context) == 100


class TestLargeDocument:
    async def test_query_finds_the_right_section(
        self,
        store: InMemoryVectorStore,
        embedder: EmbeddingAdapter,
        retrieval_config: RetrievalConfig,
        active: ActiveTenant,
    ) -> None:
        topics = ["Network", "Storage", "Deploy", "Billing", "Invoice", "Garden", "Tomato", "Lag"]
        lines = ["# Handbook"]
        for topic in topics:
            lines.append(f"## {topic}")
            lines.extend(f"{topic} notes, item {i}." for i in range(111))
        content = "\n".join(lines) + "\n"
        assert len(lines) == 897

        indexer = DocumentIndexer(store, embedder, retrieval_config)
        result = await indexer.index(active, "handbook.md", content)
        assert result.chunk_count == len(topics) + 1

        service = RetrievalService(store, embedder, retrieval_config)
        response = await service.query(active.tenant, QueryRequest(query="invoice", max_sources=1))

        assert len(response.sources) == 1
        source = response.sources[0]
        assert source.header_path == "Handbook > Invoice"
        assert source.start_line == 1 + 4 * 112 + 1
        assert source.end_line == source.start_line + 111
        assert source.score == pytest.approx(1.0)


class TestDeadline:
    async def test_slow_embedding_exceeds_deadline(
        self, store: InMemoryVectorStore, dims: int, active: ActiveTenant
    ) -> None:
        slow = EmbeddingAdapter(KeywordProvider(dims, delay=0.5), dims)
        service = RetrievalService(store, slow, RetrievalConfig())
        with pytest.raises(DeadlineExceededError) as exc_info:
            await service.search(active.tenant, SearchRequest(query="kafka"), timeout=0.02)
        assert exc_info.value.retryable

    async def test_deadline_passes_cancellation_through(self) -> None:
        async def body() -> None:
            async with deadline("test", 5.0):
                await asyncio.sleep(1.0)

        task = asyncio.create_task(body())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestSearchExternal:
    async def test_search_external(
        self,
        store: InMemoryVectorStore,
        embedder: EmbeddingAdapter,
        retrieval_config: RetrievalConfig,
        service: RetrievalService,
        active: ActiveTenant,
    ) -> None:
        indexer = DocumentIndexer(store, embedder, retrieval_config)
        await indexer.index(active, "guides/kafka.md", CORPUS["guides/kafka.md"])
        await indexer.index_external(
            active, SourceId("python-docs"), "library/asyncio.md", "# asyncio\n\nasyncio basics\n"
        )

        response = await service.search_external(
            active.tenant, ExternalSearchRequest(query="asyncio")
        )
        assert [hit.relative_path for hit in response.hits] == ["library/asyncio.md"]
        assert response.hits[0].source_id == "python-docs"
        assert response.hits[0].header_path == "asyncio"

        filtered = await service.search_external(
            active.tenant, ExternalSearchRequest(query="asyncio", source_ids=["other"])
        )
        assert filtered.hits == []
