"""
MEL Guard - Snapshot Cache
Version: 1.0.0

Changelog:
v1.0.0 (2026-10-12): TTL cache for listing endpoints, replaces the module-level
                      equipment/work order cache

Holds at most one Snapshot. Listing endpoints share it for SNAPSHOT_CACHE_TTL_S
seconds; the reconciler never reads it and rule mutations invalidate it.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from melguard.config import settings
from melguard.services.data_source import Snapshot

logger = logging.getLogger(__name__)


class SnapshotCache:
    def __init__(self, ttl_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = settings.SNAPSHOT_CACHE_TTL_S if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._snapshot: Optional[Snapshot] = None
        self._stored_at = 0.0
        self._lock = asyncio.Lock()

    def peek(self) -> Optional[Snapshot]:
        """Cached snapshot if still fresh"""
        if self._snapshot is None or self.ttl <= 0:
            return None
        if self._clock() - self._stored_at > self.ttl:
            return None
        return self._snapshot

    async def get_or_load(self, loader: Callable[[], Awaitable[Snapshot]]) -> Snapshot:
        cached = self.peek()
        if cached is not None:
            return cached
        async with self._lock:
            cached = self.peek()
            if cached is not None:
                return cached
            snapshot = await loader()
            self._snapshot = snapshot
            self._stored_at = self._clock()
            logger.debug(f"Snapshot cached: {len(snapshot.equipment)} equipment, "
                         f"{len(snapshot.work_orders)} work orders")
            return snapshot

    def invalidate(self):
        self._snapshot = None
        self._stored_at = 0.0
