"""
backend/app/services/event_handlers/match_handlers.py

Purpose:
    Subscriber logic for match-domain events. ``match.updated`` drives the
    completion settlement trigger (idempotent: replays are no-ops) and fans
    the new snapshot out to live match subscriptions.

Dependencies:
    - app.services.event_bus
    - app.services.event_models
    - app.services.settlement_service
    - app.services.match_subscriptions
"""

from __future__ import annotations

import logging

from app.services.event_bus import event_bus
from app.services.event_models import BaseEvent, MatchSettledEvent, MatchUpdatedEvent
from app.services.match_subscriptions import match_subscriptions
from app.services.settlement_service import settlement_service

logger = logging.getLogger("tablekick.event_handlers.match")


async def handle_match_settlement(event: BaseEvent) -> None:
    if not isinstance(event, MatchUpdatedEvent):
        return
    plan = await settlement_service.settle_match_update(event.before, event.after)
    if plan is None:
        return

    event_bus.publish(
        MatchSettledEvent(
            source="settlement_trigger",
            correlation_id=event.correlation_id,
            match_id=event.match_id,
            outcome=plan.settlement.outcome,
            elo_changes=plan.elo_changes,
        )
    )
    logger.info("Processed match.updated settlement for match_id=%s", event.match_id)


async def handle_match_subscriptions(event: BaseEvent) -> None:
    if not isinstance(event, MatchUpdatedEvent):
        return
    await match_subscriptions.dispatch(event.match_id, event.before, event.after)
