"""
backend/app/workers/change_stream.py

Purpose:
    Shared machinery for turning committed writes on one collection into
    event-bus events. Subclasses pick the collection, the checkpoint key and
    the change -> event conversion; this class owns the watch loop: resume
    from the last persisted token, retry after transient store errors, start
    over when the token can no longer be resumed.

Dependencies:
    - motor change streams (replica set with pre/post images enabled)
    - app.services.event_bus
    - app.workers._state
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pymongo.errors import OperationFailure, PyMongoError

import app.database as _db
from app.config import settings
from app.services.event_bus import InMemoryEventBus, event_bus
from app.services.event_models import BaseEvent
from app.workers._state import get_resume_token, set_resume_token

logger = logging.getLogger("tablekick.change_stream")

WATCHED_OPERATIONS = {"insert", "update", "replace", "delete"}
# ChangeStreamHistoryLost / InvalidResumeToken: the saved token is useless.
_UNRESUMABLE_CODES = {260, 280, 286}


def document_key(change: dict[str, Any]) -> Any:
    if change.get("operationType") not in WATCHED_OPERATIONS:
        return None
    return (change.get("documentKey") or {}).get("_id")


def changed_fields(change: dict[str, Any]) -> list[str]:
    description = change.get("updateDescription") or {}
    updated = set((description.get("updatedFields") or {}).keys())
    return sorted(updated | set(description.get("removedFields") or []))


def images(change: dict[str, Any]) -> tuple[dict | None, dict | None]:
    """``(before, after)``; ``after`` is ``None`` for deletes."""
    after = change.get("fullDocument") if change.get("operationType") != "delete" else None
    return change.get("fullDocumentBeforeChange"), after


class ChangeStreamWorker:
    collection = ""
    state_key = ""

    def __init__(self, bus: InMemoryEventBus | None = None, database=None, *, retry_seconds: float | None = None) -> None:
        self._bus = bus or event_bus
        self._db = database
        self._retry_seconds = settings.CHANGE_STREAM_RETRY_SECONDS if retry_seconds is None else retry_seconds
        self._task: asyncio.Task | None = None
        self._resume_token: dict | None = None
        self.delivered = 0

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def to_event(self, change: dict[str, Any]) -> BaseEvent | None:
        raise NotImplementedError

    async def start(self) -> None:
        if self.running:
            return
        self._resume_token = await get_resume_token(self.state_key)
        self._task = asyncio.create_task(self._run(), name=self.state_key)
        logger.info("%s change stream started (resuming=%s)", self.collection, self._resume_token is not None)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("%s change stream stopped after %d deliveries", self.collection, self.delivered)

    async def _run(self) -> None:
        while True:
            try:
                await self._consume()
            except asyncio.CancelledError:
                raise
            except OperationFailure as exc:
                if exc.code in _UNRESUMABLE_CODES:
                    logger.warning(
                        "%s resume token rejected (code=%s); restarting stream from now", self.collection, exc.code
                    )
                    self._resume_token = None
                    await set_resume_token(self.state_key, None)
                else:
                    logger.error("%s change stream failed: %s", self.collection, exc)
            except PyMongoError as exc:
                logger.warning(
                    "%s change stream interrupted: %s; retrying in %.1fs", self.collection, exc, self._retry_seconds
                )
            await asyncio.sleep(self._retry_seconds)

    async def _consume(self) -> None:
        async with getattr(self.db, self.collection).watch(
            full_document="whenAvailable",
            full_document_before_change="whenAvailable",
            resume_after=self._resume_token,
        ) as stream:
            async for change in stream:
                await self.handle_change(change)

    async def handle_change(self, change: dict[str, Any]) -> None:
        event = self.to_event(change)
        if event is not None:
            self._bus.publish(event)
            self.delivered += 1
        token = change.get("_id")
        if token is not None:
            self._resume_token = token
            await set_resume_token(self.state_key, token)
