"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for all collections.
    Enables change-stream pre/post images on the matches collection so the
    settlement trigger receives before/after snapshots.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import OperationFailure

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("tablekick.database")

# Collections with a change-stream worker.
_WATCHED_COLLECTIONS = ("matches", "invitations")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_collections()
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_collections() -> None:
    """Create the watched collections with change-stream images enabled.

    Pre-images are what lets a change event carry the document as it was
    before the update. Servers older than 6.0 reject the option; the watcher
    then falls back to after-only events and the reconciler covers settlement.
    """
    existing = await db.list_collection_names()
    for name in _WATCHED_COLLECTIONS:
        if name not in existing:
            try:
                await db.create_collection(name)
            except OperationFailure as exc:
                logger.debug("Create %s collection: %s", name, exc)
        try:
            await db.command({
                "collMod": name,
                "changeStreamPreAndPostImages": {"enabled": True},
            })
        except OperationFailure as exc:
            logger.warning("Change stream pre/post images unavailable on %s: %s", name, exc)


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent."""

    # ---- Matches ----
    # Player match history (participants contains uid, newest first)
    await db.matches.create_index([("participants", 1), ("created_at", -1)])
    # Reconciler: completed but unsettled
    await db.matches.create_index([("status", 1), ("elo_changes", 1)])
    # Lobby housekeeping
    await db.matches.create_index([("status", 1), ("last_activity_at", 1)])

    # ---- Users ----
    await db.users.create_index([("elo", -1)])
    await db.users.create_index("username")

    # ---- Relationships ----
    await db.relationships.create_index("users")

    # ---- Invitations ----
    await db.invitations.create_index([("invitee_uid", 1), ("status", 1)])
    await db.invitations.create_index([("match_id", 1), ("status", 1)])

    logger.info("Indexes ensured")
