"""
backend/tests/test_invitation_change_stream.py

Purpose:
    Invitation change stream: writes on ``invitations`` become
    invitation.updated events, checkpointed under their own key.
"""

from __future__ import annotations

import asyncio
import sys
from types import SimpleNamespace

import pytest
from bson import ObjectId

sys.path.insert(0, "backend")

from app.workers.invitation_change_stream import InvitationChangeStreamWorker, invitation_change_to_event


class _RecordingBus:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> bool:
        self.events.append(event)
        return True


class _Stream:
    def __init__(self, changes: list[dict]) -> None:
        self._changes = list(changes)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._changes:
            return self._changes.pop(0)
        await asyncio.sleep(3600)
        raise StopAsyncIteration


class _WatchedInvitations:
    def __init__(self, changes: list[dict]) -> None:
        self.calls: list[dict] = []
        self._changes = changes

    def watch(self, **kwargs):
        self.calls.append(kwargs)
        return _Stream(self._changes)


def _accepted_change(token: str = "t1") -> dict:
    oid = ObjectId()
    pending = {"_id": oid, "invitee_uid": "bob", "status": "pending"}
    return {
        "_id": {"_data": token},
        "operationType": "update",
        "documentKey": {"_id": oid},
        "fullDocumentBeforeChange": pending,
        "fullDocument": {**pending, "status": "accepted"},
        "updateDescription": {"updatedFields": {"status": "accepted"}, "removedFields": []},
    }


def test_invitation_change_becomes_event():
    change = _accepted_change()
    event = invitation_change_to_event(change)

    assert event.event_type == "invitation.updated"
    assert event.invitation_id == str(change["documentKey"]["_id"])
    assert event.before["status"] == "pending"
    assert event.after["status"] == "accepted"
    assert event.changed_fields == ["status"]

    oid = ObjectId()
    withdrawn = invitation_change_to_event({
        "operationType": "delete",
        "documentKey": {"_id": oid},
        "fullDocumentBeforeChange": {"_id": oid, "invitee_uid": "bob"},
    })
    assert withdrawn.after is None and withdrawn.before["invitee_uid"] == "bob"
    assert invitation_change_to_event({"operationType": "drop"}) is None


@pytest.mark.asyncio
async def test_worker_watches_invitations_and_checkpoints(fake_db):
    bus = _RecordingBus()
    invitations = _WatchedInvitations([_accepted_change("inv-7")])
    worker = InvitationChangeStreamWorker(bus, SimpleNamespace(invitations=invitations), retry_seconds=0.01)

    await worker.start()
    await asyncio.sleep(0.05)
    await worker.stop()

    assert invitations.calls[0]["full_document_before_change"] == "whenAvailable"
    assert [e.event_type for e in bus.events] == ["invitation.updated"]
    state = await fake_db.worker_state.find_one({"_id": "invitation_change_stream"})
    assert state["resume_token"] == {"_data": "inv-7"}
    assert await fake_db.worker_state.find_one({"_id": "match_change_stream"}) is None
