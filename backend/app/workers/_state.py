"""Persistent worker state: checkpoints that must survive restarts.

Stored in a lightweight ``worker_state`` collection. Each change-stream worker
keeps its resume token here; the settlement reconciler keeps its last run.
"""

from typing import Any

import app.database as _db
from app.utils import utcnow


async def get_state(worker_id: str) -> dict | None:
    return await _db.db.worker_state.find_one({"_id": worker_id})


async def set_synced(worker_id: str, **extra: Any) -> None:
    """Mark a worker as just synced, storing any extra checkpoint fields."""
    await _db.db.worker_state.update_one(
        {"_id": worker_id},
        {"$set": {"synced_at": utcnow(), **extra}},
        upsert=True,
    )


async def get_resume_token(worker_id: str) -> dict | None:
    doc = await get_state(worker_id)
    return doc.get("resume_token") if doc else None


async def set_resume_token(worker_id: str, token: dict | None) -> None:
    await set_synced(worker_id, resume_token=token)
