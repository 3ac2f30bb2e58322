"""
backend/app/services/event_handlers/invitation_handlers.py

Purpose:
    Fans ``invitation.updated`` events out to the invitee's live invitation
    subscriptions.

Dependencies:
    - app.services.event_models
    - app.services.match_subscriptions
"""

from __future__ import annotations

from app.services.event_models import BaseEvent, InvitationUpdatedEvent
from app.services.match_subscriptions import match_subscriptions


async def handle_invitation_subscriptions(event: BaseEvent) -> None:
    if not isinstance(event, InvitationUpdatedEvent):
        return
    await match_subscriptions.dispatch_invitation(event.invitation_id, event.before, event.after)
