"""
backend/app/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - app.services.event_bus
    - app.services.event_handlers.match_handlers
    - app.services.event_handlers.invitation_handlers
"""

from __future__ import annotations

from app.config import settings
from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers.invitation_handlers import handle_invitation_subscriptions
from app.services.event_handlers.match_handlers import (
    handle_match_settlement,
    handle_match_subscriptions,
)


def register_event_handlers(bus: InMemoryEventBus) -> None:
    if settings.EVENT_HANDLER_SETTLEMENT_ENABLED:
        bus.subscribe("match.updated", handle_match_settlement, handler_name="settlement", concurrency=1)
    if settings.EVENT_HANDLER_SUBSCRIPTIONS_ENABLED:
        bus.subscribe("match.updated", handle_match_subscriptions, handler_name="subscriptions", concurrency=1)
        bus.subscribe(
            "invitation.updated",
            handle_invitation_subscriptions,
            handler_name="invitation_subscriptions",
            concurrency=1,
        )
