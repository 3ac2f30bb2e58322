"""
backend/app/services/event_bus.py

Purpose:
    Lightweight in-memory event bus for process-local reactive workflows.
    Publishers enqueue onto a bounded ingress queue; a dispatcher fans each
    event out to per-handler queues served by dedicated worker tasks, so a
    slow or failing subscriber never blocks or breaks the others.

Dependencies:
    - asyncio
    - app.config
    - app.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.services.event_models import BaseEvent, normalize_event_time
from app.utils import ensure_utc, utcnow

logger = logging.getLogger("tablekick.event_bus")

AsyncEventHandler = Callable[[BaseEvent], Awaitable[None]]
_LAG_WINDOW_SECONDS = 60.0
_METRIC_KEYS = ("published", "handled", "failed", "dropped")


@dataclass
class _Subscription:
    event_type: str
    handler_name: str
    handler: AsyncEventHandler
    concurrency: int
    queue: asyncio.Queue[BaseEvent]
    workers: list[asyncio.Task]
    handled_total: int = 0
    failed_total: int = 0
    dropped_total: int = 0
    max_queue_depth_seen: int = 0


class InMemoryEventBus:
    def __init__(
        self,
        *,
        ingress_maxsize: int,
        handler_maxsize: int,
        default_concurrency: int,
        error_buffer_size: int,
    ) -> None:
        self._ingress_maxsize = max(1, int(ingress_maxsize))
        self._handler_maxsize = max(1, int(handler_maxsize))
        self._default_concurrency = max(1, int(default_concurrency))

        self._ingress: asyncio.Queue[BaseEvent] = asyncio.Queue(maxsize=self._ingress_maxsize)
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task | None = None
        self._running = False
        self._lock = asyncio.Lock()

        self._totals = {metric: 0 for metric in _METRIC_KEYS}
        self._per_event_type: dict[str, dict[str, int]] = defaultdict(lambda: {m: 0 for m in _METRIC_KEYS})
        self._max_ingress_depth_seen = 0
        self._errors: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))
        self._lag_samples: deque[tuple[float, int]] = deque()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            for subs in self._subscriptions.values():
                for sub in subs:
                    if not sub.workers:
                        sub.workers.extend(self._spawn_workers(sub))
            self._dispatcher_task = asyncio.create_task(self._dispatch_loop(), name="event_bus_dispatcher")
            logger.info("Event bus started")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            tasks: list[asyncio.Task] = []
            if self._dispatcher_task is not None:
                tasks.append(self._dispatcher_task)
                self._dispatcher_task = None
            for sub in self._all_subscriptions():
                tasks.extend(sub.workers)
                sub.workers.clear()
            for task in tasks:
                task.cancel()
            for task in tasks:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.info("Event bus stopped")

    def subscribe(
        self,
        event_type: str,
        handler: AsyncEventHandler,
        *,
        handler_name: str,
        concurrency: int | None = None,
    ) -> None:
        sub = _Subscription(
            event_type=event_type,
            handler_name=handler_name,
            handler=handler,
            concurrency=max(1, int(concurrency or self._default_concurrency)),
            queue=asyncio.Queue(maxsize=self._handler_maxsize),
            workers=[],
        )
        self._subscriptions[event_type].append(sub)
        if self._running:
            sub.workers.extend(self._spawn_workers(sub))

    def publish(self, event: BaseEvent) -> bool:
        """Enqueue without waiting. Returns False when the ingress queue is full."""
        normalized = normalize_event_time(event)
        try:
            self._ingress.put_nowait(normalized)
        except asyncio.QueueFull:
            self._count("dropped", normalized.event_type)
            logger.warning("Event bus ingress queue full; dropping event_type=%s", normalized.event_type)
            return False
        self._count("published", normalized.event_type)
        self._max_ingress_depth_seen = max(self._max_ingress_depth_seen, self._ingress.qsize())
        return True

    async def drain(self) -> None:
        """Wait until every queued event has been handled (or failed)."""
        await self._ingress.join()
        for sub in self._all_subscriptions():
            await sub.queue.join()

    def stats(self) -> dict[str, Any]:
        self._prune_lag(utcnow().timestamp())
        per_handler: dict[str, dict[str, Any]] = {}
        for sub in self._all_subscriptions():
            depth = sub.queue.qsize()
            per_handler[f"{sub.event_type}:{sub.handler_name}"] = {
                "event_type": sub.event_type,
                "name": sub.handler_name,
                "concurrency": sub.concurrency,
                "queue_depth": depth,
                "queue_limit": self._handler_maxsize,
                "handled_total": sub.handled_total,
                "failed_total": sub.failed_total,
                "dropped_total": sub.dropped_total,
                "max_queue_depth_seen": sub.max_queue_depth_seen,
            }
        return {
            "enabled": bool(settings.EVENT_BUS_ENABLED),
            "running": self._running,
            "published_total": self._totals["published"],
            "handled_total": self._totals["handled"],
            "failed_total": self._totals["failed"],
            "dropped_total": self._totals["dropped"],
            "ingress_queue_depth": self._ingress.qsize(),
            "ingress_queue_limit": self._ingress_maxsize,
            "max_ingress_queue_depth_seen": self._max_ingress_depth_seen,
            "latency_ms": self._latency_summary(),
            "per_handler": per_handler,
            "per_event_type": {key: dict(row) for key, row in sorted(self._per_event_type.items())},
            "recent_errors": list(self._errors),
        }

    def _all_subscriptions(self) -> list[_Subscription]:
        return [sub for subs in self._subscriptions.values() for sub in subs]

    def _count(self, metric: str, event_type: str) -> None:
        self._totals[metric] += 1
        self._per_event_type[str(event_type or "unknown")][metric] += 1

    async def _dispatch_loop(self) -> None:
        while self._running:
            event = await self._ingress.get()
            try:
                for sub in self._subscriptions.get(event.event_type, []):
                    try:
                        sub.queue.put_nowait(event)
                    except asyncio.QueueFull:
                        sub.dropped_total += 1
                        self._count("dropped", event.event_type)
                        logger.warning(
                            "Event bus handler queue full; dropping event_type=%s handler=%s",
                            event.event_type,
                            sub.handler_name,
                        )
                        continue
                    sub.max_queue_depth_seen = max(sub.max_queue_depth_seen, sub.queue.qsize())
            finally:
                self._ingress.task_done()

    def _spawn_workers(self, sub: _Subscription) -> list[asyncio.Task]:
        return [
            asyncio.create_task(self._handler_loop(sub), name=f"event_bus_{sub.event_type}_{sub.handler_name}_{idx}")
            for idx in range(sub.concurrency)
        ]

    async def _handler_loop(self, sub: _Subscription) -> None:
        while self._running:
            event = await sub.queue.get()
            lag_ms = int((utcnow() - ensure_utc(event.occurred_at)).total_seconds() * 1000)
            self._record_lag(lag_ms)
            try:
                await sub.handler(event)
                sub.handled_total += 1
                self._count("handled", event.event_type)
            except Exception as exc:
                sub.failed_total += 1
                self._count("failed", event.event_type)
                self._errors.append({
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "source": event.source,
                    "handler_name": sub.handler_name,
                    "correlation_id": event.correlation_id,
                    "ts": utcnow().isoformat(),
                    "processing_lag_ms": lag_ms,
                    "error": str(exc),
                })
                logger.error(
                    "Event handler failed event_id=%s event_type=%s handler=%s correlation_id=%s error=%s",
                    event.event_id,
                    event.event_type,
                    sub.handler_name,
                    event.correlation_id,
                    str(exc),
                    exc_info=True,
                )
            finally:
                sub.queue.task_done()

    def _record_lag(self, lag_ms: int) -> None:
        now_ts = utcnow().timestamp()
        self._lag_samples.append((now_ts, max(0, int(lag_ms))))
        self._prune_lag(now_ts)

    def _prune_lag(self, now_ts: float) -> None:
        min_ts = now_ts - _LAG_WINDOW_SECONDS
        while self._lag_samples and self._lag_samples[0][0] < min_ts:
            self._lag_samples.popleft()

    def _latency_summary(self) -> dict[str, float]:
        if not self._lag_samples:
            return {"avg": 0.0, "p50": 0.0, "p95": 0.0}
        values = sorted(val for _, val in self._lag_samples)
        n = len(values)
        return {
            "avg": round(sum(values) / n, 2),
            "p50": float(values[min(n - 1, int(0.50 * (n - 1)))]),
            "p95": float(values[min(n - 1, int(0.95 * (n - 1)))]),
        }


event_bus = InMemoryEventBus(
    ingress_maxsize=settings.EVENT_BUS_INGRESS_QUEUE_MAXSIZE,
    handler_maxsize=settings.EVENT_BUS_HANDLER_QUEUE_MAXSIZE,
    default_concurrency=settings.EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY,
    error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
)
