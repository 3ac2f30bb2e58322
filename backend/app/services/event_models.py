"""
backend/app/services/event_models.py

Purpose:
    Domain event contracts for in-process reactive workflows. Match change
    and invitation change events carry full before/after document snapshots
    so subscribers (the settlement trigger, live subscriptions) never have to
    re-read the store.

Dependencies:
    - pydantic
    - app.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.utils import ensure_utc, utcnow

EventType = Literal[
    "match.updated",
    "match.settled",
    "invitation.updated",
]

ChangeOperation = Literal["insert", "update", "replace", "delete"]


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class MatchUpdatedEvent(BaseEvent):
    """One committed write to a match document.

    ``before`` is ``None`` for inserts (and when the store kept no pre-image);
    ``after`` is ``None`` for deletes.
    """

    event_type: Literal["match.updated"] = "match.updated"
    match_id: str
    operation: ChangeOperation = "update"
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    changed_fields: list[str] = Field(default_factory=list)


class MatchSettledEvent(BaseEvent):
    event_type: Literal["match.settled"] = "match.settled"
    match_id: str
    outcome: str
    elo_changes: dict[str, int] = Field(default_factory=dict)


class InvitationUpdatedEvent(BaseEvent):
    """One committed write to an invitation; ``after`` is ``None`` once it was deleted."""

    event_type: Literal["invitation.updated"] = "invitation.updated"
    invitation_id: str
    operation: ChangeOperation = "update"
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    changed_fields: list[str] = Field(default_factory=list)


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event
