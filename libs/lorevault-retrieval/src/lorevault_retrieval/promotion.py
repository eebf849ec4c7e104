"""Promotion tier changes, applied to a document and all of its chunks at once."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lorevault_core.concurrency import KeyedLock
from lorevault_core.errors import NotFoundError
from lorevault_core.models.responses import PromotionResult
from lorevault_retrieval.indexing import document_lock_key

if TYPE_CHECKING:
    from lorevault_core.models.values import TenantContext
    from lorevault_retrieval.config import RetrievalConfig
    from lorevault_storage.base import VectorStore

logger = logging.getLogger(__name__)


class PromotionService:
    """Moves documents between promotion tiers.

    Shares the indexer's KeyedLock so a concurrent re-index of the same path
    cannot write back the level it read before the change.
    """

    def __init__(
        self, store: VectorStore, retrieval: RetrievalConfig, *, locks: KeyedLock | None = None
    ) -> None:
        self._store = store
        self._retrieval = retrieval
        self._locks = locks or KeyedLock()

    async def set_promotion(
        self, tenant: TenantContext, relative_path: str, label: str
    ) -> PromotionResult:
        """Set the tier of the document at ``relative_path``.

        ``label`` may be a level name or a configured alias. Raises
        InvalidLevelError for unknown labels and NotFoundError when no document
        is stored at the path. Setting the current level succeeds and changes nothing.
        """
        level = self._retrieval.parse_level(label)
        async with self._locks.hold(document_lock_key(tenant, relative_path)):
            document = await self._store.get_by_path(relative_path, tenant)
            if document is None:
                raise NotFoundError("document", relative_path)
            if document.promotion_level == level:
                return PromotionResult(
                    document_id=document.id,
                    relative_path=relative_path,
                    previous_level=level,
                    new_level=level,
                    chunks_updated=0,
                    boost_factor=self._retrieval.boost_factor(level),
                )
            change = await self._store.set_promotion(document.id, tenant, level)
            if change is None:
                raise NotFoundError("document", relative_path)

        logger.info(
            "Promoted document %s: %s -> %s (%d chunks)",
            document.id,
            change.previous_level,
            level,
            change.chunks_updated,
        )
        return PromotionResult(
            document_id=document.id,
            relative_path=relative_path,
            previous_level=change.previous_level,
            new_level=level,
            chunks_updated=change.chunks_updated,
            boost_factor=self._retrieval.boost_factor(level),
        )
