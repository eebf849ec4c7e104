"""Similarity search, context assembly and external search for one tenant."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from lorevault_core.errors import DeadlineExceededError
from lorevault_core.models.enums import PromotionLevel
from lorevault_core.models.responses import (
    ExternalSearchHit,
    ExternalSearchResponse,
    QueryResponse,
    QuerySource,
    SearchHit,
    SearchResponse,
)
from lorevault_core.models.values import SearchFilters
from lorevault_retrieval.ranking import (
    assemble_context,
    make_snippet,
    select_context_sources,
)
from lorevault_storage.base import similarity_order

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from lorevault_core.doc_types import DocTypeRegistry
    from lorevault_core.models.requests import ExternalSearchRequest, QueryRequest, SearchRequest
    from lorevault_core.models.values import TenantContext
    from lorevault_core.project import RetrievalOverrides
    from lorevault_retrieval.config import RetrievalConfig
    from lorevault_retrieval.embedding.adapter import EmbeddingAdapter
    from lorevault_storage.base import ScoredChunk, VectorStore

logger = logging.getLogger(__name__)

# Chunk candidates fetched per requested source, to survive de-duplication.
CANDIDATE_FACTOR = 4
MAX_CANDIDATES = 200


@asynccontextmanager
async def deadline(operation: str, timeout: float) -> AsyncIterator[None]:
    """Raise DeadlineExceededError if the block runs past ``timeout`` seconds.

    Cancellation by the caller is not converted and propagates unchanged.
    """
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError as exc:
        logger.warning("%s exceeded its deadline of %.1fs", operation, timeout)
        raise DeadlineExceededError(operation, timeout) from exc


class RetrievalService:
    """Read paths over the store. Every call takes the tenant explicitly."""

    def __init__(
        self, store: VectorStore, embedder: EmbeddingAdapter, config: RetrievalConfig
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config

    def build_filters(
        self, request: SearchRequest, doc_types: DocTypeRegistry | None = None
    ) -> SearchFilters | None:
        """Translate request labels into store filters. Unknown labels raise typed errors."""
        types: frozenset[str] | None = None
        if request.doc_types:
            if doc_types is not None:
                for doc_type in request.doc_types:
                    doc_types.require(doc_type)
            types = frozenset(request.doc_types)

        levels: frozenset[PromotionLevel] | None = None
        if request.promotion_levels:
            levels = frozenset(self._config.parse_level(lbl) for lbl in request.promotion_levels)
        if request.min_promotion is not None:
            minimum = self._config.parse_level(request.min_promotion)
            floor = frozenset(PromotionLevel.at_least(minimum))
            levels = floor if levels is None else levels & floor

        if types is None and levels is None:
            return None
        return SearchFilters(doc_types=types, promotion_levels=levels)

    async def search(
        self,
        tenant: TenantContext,
        request: SearchRequest,
        *,
        doc_types: DocTypeRegistry | None = None,
        timeout: float | None = None,
    ) -> SearchResponse:
        """Documents most similar to the query, ordered by similarity alone.

        ``boosted_score`` annotates each hit with its tier's boost factor; it does
        not influence the order.
        """
        filters = self.build_filters(request, doc_types)
        async with deadline("search", timeout or self._config.search_timeout_seconds):
            vector = await self._embedder.embed(request.query)
            scored = await self._store.search(
                vector.values,
                tenant,
                request.limit,
                ef_search=self._config.ef_search,
                filters=filters,
            )

        scored.sort(
            key=lambda s: similarity_order(
                s.similarity, s.document.promotion_level, s.document.updated_at
            )
        )
        hits = [
            SearchHit(
                document_id=s.document.id,
                relative_path=s.document.relative_path,
                title=s.document.title,
                doc_type=s.document.doc_type,
                promotion_level=s.document.promotion_level,
                score=s.similarity,
                boosted_score=s.similarity * self._config.boost_factor(s.document.promotion_level),
                snippet=make_snippet(s.document.summary, self._config.snippet_chars),
                updated_at=s.document.updated_at,
            )
            for s in scored
        ]
        logger.debug("Search returned %d hits (limit %d)", len(hits), request.limit)
        return SearchResponse(query=request.query, hits=hits, total=len(hits))

    async def query(
        self,
        tenant: TenantContext,
        request: QueryRequest,
        *,
        overrides: RetrievalOverrides | None = None,
        timeout: float | None = None,
    ) -> QueryResponse:
        """Assemble ranked sources and a numbered context string for a generation call."""
        min_similarity = request.min_similarity
        if min_similarity is None and overrides is not None:
            min_similarity = overrides.min_similarity
        if min_similarity is None:
            min_similarity = self._config.min_similarity
        cap = self._config.top_tier_cap
        if overrides is not None and overrides.top_tier_cap is not None:
            cap = overrides.top_tier_cap
        use_top_tier = request.include_top_tier and cap > 0

        k = min(request.max_sources * CANDIDATE_FACTOR, MAX_CANDIDATES)
        top = PromotionLevel.top()
        async with deadline("query", timeout or self._config.search_timeout_seconds):
            vector = await self._embedder.embed(request.query)
            top_tier: list[ScoredChunk] = []
            if use_top_tier:
                top_tier = await self._store.search_chunks(
                    vector.values,
                    tenant,
                    k,
                    ef_search=self._config.ef_search,
                    filters=SearchFilters.for_levels(top),
                )
            candidates = await self._store.search_chunks(
                vector.values,
                tenant,
                k,
                ef_search=self._config.ef_search,
                filters=SearchFilters().excluding(top) if use_top_tier else None,
            )

        selected = select_context_sources(
            top_tier,
            candidates,
            max_sources=request.max_sources,
            top_tier_cap=cap if use_top_tier else 0,
            min_similarity=min_similarity,
        )
        context, truncated = assemble_context(selected, self._config.max_context_chars)
        sources = [
            QuerySource(
                rank=rank,
                document_id=src.scored.document.id,
                chunk_id=src.scored.chunk.id,
                relative_path=src.scored.document.relative_path,
                title=src.scored.document.title,
                header_path=src.scored.chunk.header_path,
                start_line=src.scored.chunk.start_line,
                end_line=src.scored.chunk.end_line,
                promotion_level=src.scored.chunk.promotion_level,
                score=src.scored.similarity,
                top_tier=src.top_tier,
                content=src.scored.chunk.content,
            )
            for rank, src in enumerate(selected, start=1)
        ]
        top_tier_count = sum(1 for s in sources if s.top_tier)
        logger.debug(
            "Query assembled %d sources (%d top tier, %d context chars)",
            len(sources),
            top_tier_count,
            len(context),
        )
        return QueryResponse(
            query=request.query,
            sources=sources,
            context=context,
            top_tier_count=top_tier_count,
            truncated=truncated,
        )

    async def search_external(
        self,
        tenant: TenantContext,
        request: ExternalSearchRequest,
        *,
        timeout: float | None = None,
    ) -> ExternalSearchResponse:
        """Similarity search over the external collection only."""
        source_ids = frozenset(request.source_ids) if request.source_ids else None
        async with deadline("search_external", timeout or self._config.search_timeout_seconds):
            vector = await self._embedder.embed(request.query)
            scored = await self._store.search_external(
                vector.values,
                tenant,
                request.limit,
                ef_search=self._config.ef_search,
                source_ids=source_ids,
            )

        scored.sort(key=lambda s: (-s.similarity, -s.document.updated_at.timestamp()))
        hits = [
            ExternalSearchHit(
                document_id=s.document.id,
                source_id=s.document.source_id,
                relative_path=s.document.relative_path,
                title=s.document.title,
                header_path=s.chunk.header_path,
                start_line=s.chunk.start_line,
                end_line=s.chunk.end_line,
                score=s.similarity,
                content=s.chunk.content,
            )
            for s in scored
        ]
        return ExternalSearchResponse(query=request.query, hits=hits, total=len(hits))
