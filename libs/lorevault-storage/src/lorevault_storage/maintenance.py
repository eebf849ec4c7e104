"""Offline ANN index maintenance."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from lorevault_core.models.responses import MaintenanceReport

if TYPE_CHECKING:
    from lorevault_storage.base import VectorStore

logger = logging.getLogger(__name__)


class IndexMaintainer:
    """Rebuilds the store's vector indexes once dead rows pass ``bloat_threshold``.

    Runs are serialized per maintainer; the store keeps serving searches from
    the previous index until the rebuilt one replaces it.
    """

    def __init__(self, store: VectorStore, bloat_threshold: float = 0.2) -> None:
        self._store = store
        self._threshold = bloat_threshold
        self._lock = asyncio.Lock()

    @property
    def bloat_threshold(self) -> float:
        return self._threshold

    async def run(self, *, force: bool = False) -> MaintenanceReport:
        async with self._lock:
            started = time.monotonic()
            ratio = await self._store.bloat_ratio()
            if not force and ratio < self._threshold:
                logger.info(
                    "Index bloat %.3f below threshold %.3f, skipping", ratio, self._threshold
                )
                return MaintenanceReport(
                    bloat_ratio=ratio,
                    rebuilt=False,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )

            logger.info("Rebuilding vector indexes (bloat %.3f, forced=%s)", ratio, force)
            indexes = await self._store.rebuild_indexes()
            return MaintenanceReport(
                bloat_ratio=ratio,
                rebuilt=True,
                indexes=indexes,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
