"""
backend/app/workers/invitation_change_stream.py

Purpose:
    Feeds live invitation subscriptions: every committed write on the
    ``invitations`` collection becomes an ``invitation.updated`` event, so an
    invitee sees new, answered and withdrawn invitations without polling.

Dependencies:
    - app.workers.change_stream
    - app.services.event_models
"""

from __future__ import annotations

from typing import Any

from app.services.event_models import InvitationUpdatedEvent
from app.workers.change_stream import ChangeStreamWorker, changed_fields, document_key, images


def invitation_change_to_event(change: dict[str, Any]) -> InvitationUpdatedEvent | None:
    key = document_key(change)
    if key is None:
        return None
    before, after = images(change)
    return InvitationUpdatedEvent(
        source="invitation_change_stream",
        invitation_id=str(key),
        operation=change["operationType"],
        before=before,
        after=after,
        changed_fields=changed_fields(change),
    )


class InvitationChangeStreamWorker(ChangeStreamWorker):
    collection = "invitations"
    state_key = "invitation_change_stream"

    def to_event(self, change: dict[str, Any]) -> InvitationUpdatedEvent | None:
        return invitation_change_to_event(change)


invitation_change_stream = InvitationChangeStreamWorker()
