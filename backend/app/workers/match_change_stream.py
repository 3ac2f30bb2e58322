"""
backend/app/workers/match_change_stream.py

Purpose:
    Turns committed writes on the ``matches`` collection into
    ``match.updated`` events carrying both the pre-image and the post-image
    of the document. This is the delivery side of the settlement trigger and
    of live match subscriptions: at-least-once, resumable from the last
    persisted resume token, retried after transient store errors.

Dependencies:
    - app.workers.change_stream
    - app.services.event_models
"""

from __future__ import annotations

from typing import Any

from app.services.event_models import MatchUpdatedEvent
from app.workers.change_stream import ChangeStreamWorker, changed_fields, document_key, images


def change_to_event(change: dict[str, Any]) -> MatchUpdatedEvent | None:
    key = document_key(change)
    if key is None:
        return None
    before, after = images(change)
    return MatchUpdatedEvent(
        source="match_change_stream",
        match_id=str(key),
        operation=change["operationType"],
        before=before,
        after=after,
        changed_fields=changed_fields(change),
    )


class MatchChangeStreamWorker(ChangeStreamWorker):
    collection = "matches"
    state_key = "match_change_stream"

    def to_event(self, change: dict[str, Any]) -> MatchUpdatedEvent | None:
        return change_to_event(change)


match_change_stream = MatchChangeStreamWorker()
