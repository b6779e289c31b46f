"""Keyed async work queue for cluster reconciliation.

Guarantees at most one in-flight reconciliation per cluster key while
different keys run concurrently on a fixed pool of workers.

- A key already waiting in the queue is not enqueued twice.
- A key added while it is being processed is marked dirty and re-queued
  once the current run finishes.
- ``add_after`` schedules a delayed add; for a key with several pending
  timers only the earliest deadline is kept.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

import structlog

from cluster_cleaner.models.cluster import ObjectKey, ReconcileResult
from cluster_cleaner.observability.logging import reconcile_context
from cluster_cleaner.observability.metrics import reconcile_queue_depth

_logger = structlog.get_logger(component="reconcile_queue")

_DEFAULT_ERROR_REQUEUE = timedelta(minutes=5)


class ReconcileQueue:
    """Deduplicating, single-flight-per-key reconcile queue.

    Args:
        reconcile_fn: ``async (key) -> ReconcileResult``.
        workers: Number of concurrent worker tasks.
        error_requeue: Delay applied when ``reconcile_fn`` raises.
    """

    def __init__(
        self,
        reconcile_fn: Callable[[ObjectKey], Awaitable[ReconcileResult]],
        workers: int = 4,
        error_requeue: timedelta = _DEFAULT_ERROR_REQUEUE,
    ) -> None:
        self._reconcile_fn = reconcile_fn
        self._num_workers = max(1, workers)
        self._error_requeue = error_requeue

        # Initialized in start()
        self._queue: asyncio.Queue[ObjectKey | None]
        self._workers: list[asyncio.Task[None]] = []
        self._running = False

        self._queued: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._dirty: set[ObjectKey] = set()
        self._timers: dict[ObjectKey, tuple[float, asyncio.TimerHandle]] = {}

    async def start(self) -> None:
        """Start worker tasks. Must be called before add()."""
        self._queue = asyncio.Queue()
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"reconcile_worker_{i}") for i in range(self._num_workers)
        ]
        _logger.info("reconcile_queue_started", workers=self._num_workers)

    async def stop(self) -> None:
        """Cancel timers and let workers finish their current item. Safe before start()."""
        self._running = False
        for _deadline, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        if not self._workers:
            return
        for _ in self._workers:
            self._queue.put_nowait(None)
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        _logger.info("reconcile_queue_stopped")

    def add(self, key: ObjectKey) -> None:
        """Enqueue *key* for immediate reconciliation."""
        if not self._running:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)
        reconcile_queue_depth.set(len(self._queued))

    def add_after(self, key: ObjectKey, delay: timedelta) -> None:
        """Enqueue *key* after *delay*, keeping only the earliest pending timer."""
        if not self._running:
            return
        seconds = max(0.0, delay.total_seconds())
        if seconds == 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        existing = self._timers.get(key)
        if existing is not None:
            if existing[0] <= deadline:
                return
            existing[1].cancel()
        handle = loop.call_at(deadline, self._fire_timer, key)
        self._timers[key] = (deadline, handle)

    def __len__(self) -> int:
        return len(self._queued)

    def pending_timer(self, key: ObjectKey) -> float | None:
        """Loop time at which *key* is scheduled, or None."""
        entry = self._timers.get(key)
        return entry[0] if entry is not None else None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fire_timer(self, key: ObjectKey) -> None:
        self._timers.pop(key, None)
        self.add(key)

    async def _worker(self, worker_id: int) -> None:
        _logger.debug("worker_started", worker_id=worker_id)
        while True:
            key = await self._queue.get()
            if key is None:
                self._queue.task_done()
                break

            self._queued.discard(key)
            self._processing.add(key)
            reconcile_queue_depth.set(len(self._queued))

            requeue_after: timedelta | None
            try:
                with reconcile_context(key.namespace, key.name):
                    result = await self._reconcile_fn(key)
                requeue_after = result.requeue_after
            except Exception as exc:
                _logger.error(
                    "reconcile_unhandled_error",
                    worker_id=worker_id,
                    cluster=key.name,
                    namespace=key.namespace,
                    error=str(exc),
                    exc_info=True,
                )
                requeue_after = self._error_requeue
            finally:
                self._processing.discard(key)
                self._queue.task_done()

            # A dirty key runs again at once and the rerun sets its own requeue.
            if key in self._dirty:
                self._dirty.discard(key)
                self.add(key)
            elif requeue_after is not None:
                self.add_after(key, requeue_after)

        _logger.debug("worker_stopped", worker_id=worker_id)
