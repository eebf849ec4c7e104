"""The per-client entry point: validation, tenant binding and error envelopes.

One :class:`KnowledgeGateway` serves one client. It owns that client's
TenantSession, checks every request before anything reaches the store, and is
the only place where exceptions become ``ToolResponse`` failures.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Self, TypeVar

from pydantic import BaseModel, ValidationError

from lorevault_core.concurrency import KeyedLock
from lorevault_core.errors import LorevaultError, NotFoundError, RequestValidationError
from lorevault_core.models.enums import ErrorCode
from lorevault_core.models.identifiers import SourceId
from lorevault_core.models.requests import (
    ActivateRequest,
    DeleteRequest,
    ExternalIndexRequest,
    ExternalSearchRequest,
    IndexRequest,
    PromotionRequest,
    QueryRequest,
    SearchRequest,
)
from lorevault_core.models.responses import (
    ActivationResult,
    DeleteResult,
    ErrorDetail,
    ExternalSearchResponse,
    IndexResult,
    MaintenanceReport,
    PromotionResult,
    QueryResponse,
    SearchResponse,
    ToolResponse,
)
from lorevault_core.models.values import TenantScope
from lorevault_core.project import DEFAULT_BRANCH, derive_tenant, load_project_config
from lorevault_core.session import TenantSession
from lorevault_core.validation import resolve_within_root, validate_relative_path
from lorevault_retrieval.config import EmbeddingConfig, RetrievalConfig
from lorevault_retrieval.embedding.adapter import EmbeddingAdapter
from lorevault_retrieval.indexing import DocumentIndexer
from lorevault_retrieval.promotion import PromotionService
from lorevault_retrieval.retrieval import RetrievalService
from lorevault_storage.config import DatabaseConfig
from lorevault_storage.exceptions import DimensionMismatchError
from lorevault_storage.maintenance import IndexMaintainer
from lorevault_storage.memory import InMemoryVectorStore
from lorevault_storage.pgvector_store import PgVectorStore
from lorevault_storage.pool import ConnectionPool

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from lorevault_core.session import ActiveTenant
    from lorevault_retrieval.embedding.provider import EmbeddingProvider
    from lorevault_storage.base import VectorStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse(model: type[ModelT], **fields: Any) -> ModelT:
    try:
        return model(**fields)
    except ValidationError as exc:
        raise RequestValidationError.from_pydantic(exc) from exc


def _capped(field: str, value: int | None, default: int, cap: int) -> int:
    """The explicit value, or the default when omitted. Explicit values above ``cap`` raise."""
    if value is None:
        return min(default, cap)
    if value > cap:
        msg = f"{field} exceeds the configured maximum of {cap}"
        raise RequestValidationError(msg, details={"field": field, "value": value, "max": cap})
    return value


def error_detail(exc: LorevaultError) -> ErrorDetail:
    return ErrorDetail(
        code=exc.code,
        message=exc.message,
        retryable=exc.retryable,
        details=exc.details,
        timestamp=datetime.now(UTC),
    )


class KnowledgeGateway:
    """Every external operation, bound to one client's tenant session."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingAdapter,
        retrieval: RetrievalConfig | None = None,
        *,
        locks: KeyedLock | None = None,
        maintainer: IndexMaintainer | None = None,
    ) -> None:
        self._config = retrieval or RetrievalConfig()
        locks = locks or KeyedLock()
        self._session = TenantSession()
        self._store = store
        self._indexer = DocumentIndexer(store, embedder, self._config, locks=locks)
        self._promotion = PromotionService(store, self._config, locks=locks)
        self._retrieval = RetrievalService(store, embedder, self._config)
        self._maintainer = maintainer or IndexMaintainer(store)

    @property
    def session(self) -> TenantSession:
        return self._session

    async def _guard(
        self,
        operation: str,
        envelope: type[ToolResponse[ModelT]],
        call: Callable[[], Awaitable[ModelT]],
    ) -> ToolResponse[ModelT]:
        try:
            return envelope.ok(await call())
        except LorevaultError as exc:
            log = logger.warning if exc.retryable else logger.info
            log("%s failed: %s (%s)", operation, exc.code, exc.message)
            return envelope.fail(error_detail(exc))
        except Exception:
            logger.exception("%s failed unexpectedly", operation)
            return envelope.fail(
                ErrorDetail(
                    code=ErrorCode.INTERNAL_ERROR,
                    message=f"{operation} failed unexpectedly",
                    timestamp=datetime.now(UTC),
                )
            )

    def _safe_path(self, active: ActiveTenant, path: str) -> str:
        relative = validate_relative_path(path)
        resolve_within_root(active.root, relative)
        return relative

    # -- session ---------------------------------------------------------------

    async def activate(
        self, config_path: str, branch: str = DEFAULT_BRANCH
    ) -> ToolResponse[ActivationResult]:
        async def call() -> ActivationResult:
            request = _parse(ActivateRequest, config_path=config_path, branch=branch)
            project = load_project_config(request.config_path)
            tenant = derive_tenant(project, request.branch)
            self._session.activate(tenant, project)
            return ActivationResult(
                tenant=tenant, project_name=project.project_name, project_root=project.root
            )

        return await self._guard("activate", ToolResponse[ActivationResult], call)

    def deactivate(self) -> None:
        self._session.deactivate()

    # -- documents -------------------------------------------------------------

    async def index(self, path: str, content: str) -> ToolResponse[IndexResult]:
        async def call() -> IndexResult:
            active = self._session.require()
            request = _parse(IndexRequest, path=path, content=content)
            relative = self._safe_path(active, request.path)
            return await self._indexer.index(active, relative, request.content)

        return await self._guard("index", ToolResponse[IndexResult], call)

    async def delete_document(self, path: str) -> ToolResponse[DeleteResult]:
        async def call() -> DeleteResult:
            active = self._session.require()
            relative = self._safe_path(active, path)
            result = await self._indexer.remove(active, relative)
            if result is None:
                raise NotFoundError("document", relative)
            return result

        return await self._guard("delete_document", ToolResponse[DeleteResult], call)

    async def set_promotion(self, path: str, level: str) -> ToolResponse[PromotionResult]:
        async def call() -> PromotionResult:
            active = self._session.require()
            request = _parse(PromotionRequest, path=path, level=level)
            relative = self._safe_path(active, request.path)
            return await self._promotion.set_promotion(active.tenant, relative, request.level)

        return await self._guard("set_promotion", ToolResponse[PromotionResult], call)

    async def delete(
        self,
        project: str,
        branch: str | None = None,
        workspace_hash: str | None = None,
        *,
        dry_run: bool = False,
    ) -> ToolResponse[DeleteResult]:
        """Delete everything in a scope inside the active project.

        The scope may narrow to a branch and a workspace, never widen past the
        active project. ``dry_run`` reports the counts without deleting.
        """

        async def call() -> DeleteResult:
            active = self._session.require()
            request = _parse(
                DeleteRequest,
                project=project,
                branch=branch,
                workspace_hash=workspace_hash,
                dry_run=dry_run,
            )
            if request.project != active.tenant.project:
                msg = "Delete scope must stay within the active project"
                raise RequestValidationError(
                    msg, details={"project": request.project, "active": active.tenant.project}
                )
            scope = _parse(
                TenantScope,
                project=request.project,
                branch=request.branch,
                workspace_hash=request.workspace_hash,
            )
            if request.dry_run:
                counted = await self._store.count_scope(scope)
                return DeleteResult(
                    scope=scope,
                    deleted_documents=counted.documents,
                    deleted_chunks=counted.chunks,
                    dry_run=True,
                )
            removed = await self._store.delete_scope(scope, include_external=True)
            return DeleteResult(
                scope=scope,
                deleted_documents=removed.documents,
                deleted_chunks=removed.chunks,
            )

        return await self._guard("delete", ToolResponse[DeleteResult], call)

    # -- retrieval -------------------------------------------------------------

    async def search(
        self,
        query: str,
        limit: int | None = None,
        doc_types: list[str] | None = None,
        promotion_levels: list[str] | None = None,
        min_promotion: str | None = None,
    ) -> ToolResponse[SearchResponse]:
        async def call() -> SearchResponse:
            active = self._session.require()
            overrides = active.project.config.retrieval
            request = _parse(
                SearchRequest,
                query=query,
                limit=_capped(
                    "limit",
                    limit,
                    overrides.default_limit or self._config.default_limit,
                    self._config.max_limit,
                ),
                doc_types=doc_types,
                promotion_levels=promotion_levels,
                min_promotion=min_promotion,
            )
            return await self._retrieval.search(
                active.tenant, request, doc_types=active.doc_types
            )

        return await self._guard("search", ToolResponse[SearchResponse], call)

    async def query(
        self,
        query: str,
        max_sources: int | None = None,
        include_top_tier: bool = True,
        min_similarity: float | None = None,
    ) -> ToolResponse[QueryResponse]:
        async def call() -> QueryResponse:
            active = self._session.require()
            overrides = active.project.config.retrieval
            request = _parse(
                QueryRequest,
                query=query,
                max_sources=_capped(
                    "max_sources",
                    max_sources,
                    overrides.default_max_sources or self._config.default_max_sources,
                    self._config.max_sources_limit,
                ),
                include_top_tier=include_top_tier,
                min_similarity=min_similarity,
            )
            return await self._retrieval.query(active.tenant, request, overrides=overrides)

        return await self._guard("query", ToolResponse[QueryResponse], call)

    # -- external collection ---------------------------------------------------

    async def index_external(
        self, source_id: str, path: str, content: str
    ) -> ToolResponse[IndexResult]:
        async def call() -> IndexResult:
            active = self._session.require()
            request = _parse(
                ExternalIndexRequest, source_id=source_id, path=path, content=content
            )
            if active.project.config.external_source(request.source_id) is None:
                msg = f"Unknown external source {request.source_id!r}"
                raise RequestValidationError(msg, details={"source_id": request.source_id})
            relative = validate_relative_path(request.path)
            return await self._indexer.index_external(
                active, SourceId(request.source_id), relative, request.content
            )

        return await self._guard("index_external", ToolResponse[IndexResult], call)

    async def search_external(
        self, query: str, limit: int | None = None, source_ids: list[str] | None = None
    ) -> ToolResponse[ExternalSearchResponse]:
        async def call() -> ExternalSearchResponse:
            active = self._session.require()
            request = _parse(
                ExternalSearchRequest,
                query=query,
                limit=_capped(
                    "limit", limit, self._config.default_limit, self._config.max_limit
                ),
                source_ids=source_ids,
            )
            return await self._retrieval.search_external(active.tenant, request)

        return await self._guard("search_external", ToolResponse[ExternalSearchResponse], call)

    # -- maintenance -----------------------------------------------------------

    async def run_maintenance(self, *, force: bool = False) -> ToolResponse[MaintenanceReport]:
        async def call() -> MaintenanceReport:
            return await self._maintainer.run(force=force)

        return await self._guard("run_maintenance", ToolResponse[MaintenanceReport], call)


class LorevaultRuntime:
    """Process-wide resources shared by every client gateway.

    Holds the store, the embedding adapter and the per-path lock table; hands
    out one :class:`KnowledgeGateway` per client via :meth:`new_session`.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingAdapter,
        retrieval: RetrievalConfig | None = None,
        *,
        pool: ConnectionPool | None = None,
        bloat_threshold: float = 0.2,
    ) -> None:
        if embedder.dimensions != store.dimensions:
            raise DimensionMismatchError(
                store.dimensions, embedder.dimensions, what="embedding adapter"
            )
        self.store = store
        self.embedder = embedder
        self.retrieval = retrieval or RetrievalConfig()
        self._pool = pool
        self._locks = KeyedLock()
        self._maintainer = IndexMaintainer(store, bloat_threshold)

    @classmethod
    def from_config(
        cls,
        database: DatabaseConfig | None = None,
        embedding: EmbeddingConfig | None = None,
        retrieval: RetrievalConfig | None = None,
    ) -> Self:
        """PostgreSQL-backed runtime. Call ``open()`` (or use ``async with``) before serving."""
        database = database or DatabaseConfig()
        pool = ConnectionPool(database)
        embedder = EmbeddingAdapter.from_config(
            embedding or EmbeddingConfig(), dimensions=database.embedding_dimensions
        )
        return cls(
            PgVectorStore(pool),
            embedder,
            retrieval,
            pool=pool,
            bloat_threshold=database.maintenance_bloat_ratio,
        )

    @classmethod
    def in_memory(
        cls,
        provider: EmbeddingProvider,
        dimensions: int,
        retrieval: RetrievalConfig | None = None,
    ) -> Self:
        """Runtime on the in-process store, for local runs and tests."""
        store = InMemoryVectorStore(dimensions)
        return cls(store, EmbeddingAdapter(provider, dimensions), retrieval)

    def new_session(self) -> KnowledgeGateway:
        return KnowledgeGateway(
            self.store,
            self.embedder,
            self.retrieval,
            locks=self._locks,
            maintainer=self._maintainer,
        )

    async def open(self) -> None:
        if self._pool is not None:
            await self._pool.open()

    async def close(self) -> None:
        await self.embedder.aclose()
        if self._pool is not None:
            await self._pool.close()

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()
