"""
backend/app/services/write_batch.py

Purpose:
    All-or-nothing multi-document commits. Operations are collected first and
    executed inside one MongoDB transaction; any failure (including a guarded
    update that matches nothing) aborts the whole batch so no partial state is
    ever observable.

Dependencies:
    - motor (client sessions / transactions)
    - app.database
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import app.database as _db

logger = logging.getLogger("tablekick.write_batch")

_OpKind = Literal["insert", "update", "delete"]


class BatchConflict(Exception):
    """A guarded write inside a batch matched no document; the batch was rolled back."""

    def __init__(self, collection: str, filter_doc: dict[str, Any]) -> None:
        super().__init__(f"batch guard failed on {collection}")
        self.collection = collection
        self.filter = filter_doc


@dataclass
class _BatchOp:
    kind: _OpKind
    collection: str
    filter: dict[str, Any] | None = None
    payload: Any = None
    require_match: bool = False
    upsert: bool = False


class WriteBatch:
    def __init__(self, database=None) -> None:
        self._db = database
        self._ops: list[_BatchOp] = []
        self._committed = False

    @property
    def db(self):
        resolved = self._db if self._db is not None else _db.db
        if resolved is None:
            raise RuntimeError("Database is not initialized yet.")
        return resolved

    def __len__(self) -> int:
        return len(self._ops)

    def insert(self, collection: str, doc: dict[str, Any]) -> WriteBatch:
        self._ops.append(_BatchOp("insert", collection, payload=doc))
        return self

    def update(
        self,
        collection: str,
        filter_doc: dict[str, Any],
        update: dict[str, Any] | list[dict[str, Any]],
        *,
        require_match: bool = False,
        upsert: bool = False,
    ) -> WriteBatch:
        self._ops.append(
            _BatchOp("update", collection, filter=filter_doc, payload=update, require_match=require_match, upsert=upsert)
        )
        return self

    def delete(self, collection: str, filter_doc: dict[str, Any], *, require_match: bool = False) -> WriteBatch:
        self._ops.append(_BatchOp("delete", collection, filter=filter_doc, require_match=require_match))
        return self

    async def commit(self) -> None:
        """Run every queued operation in a single transaction.

        Transient transaction errors (write conflicts with a concurrent batch)
        are retried by the driver from the first operation, so guards are
        re-evaluated against the winner's committed state. Raises
        ``BatchConflict`` when a ``require_match`` operation touched no
        document; other pymongo errors propagate unchanged. In both cases the
        transaction is aborted and nothing is written.
        """
        if self._committed:
            raise RuntimeError("WriteBatch already committed.")
        self._committed = True
        if not self._ops:
            return

        async with await self.db.client.start_session() as session:
            await session.with_transaction(self._run)
        logger.debug("Committed batch with %d operations", len(self._ops))

    async def _run(self, session) -> None:
        for op in self._ops:
            await self._apply(op, session)

    async def _apply(self, op: _BatchOp, session) -> None:
        coll = self.db[op.collection]
        if op.kind == "insert":
            await coll.insert_one(op.payload, session=session)
            return
        if op.kind == "update":
            result = await coll.update_one(op.filter, op.payload, upsert=op.upsert, session=session)
            if op.require_match and result.matched_count == 0:
                raise BatchConflict(op.collection, op.filter or {})
            return
        result = await coll.delete_one(op.filter, session=session)
        if op.require_match and result.deleted_count == 0:
            raise BatchConflict(op.collection, op.filter or {})
