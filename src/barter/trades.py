"""Negotiated trade conversations and their status transitions.

A conversation moves ``pending -> accepted -> completed`` or ends early as
``rejected`` or ``cancelled``. Changing either side's offered items sends an
accepted conversation back to ``pending`` and clears both acceptance flags.

Every transition is written with a guard on the status and version read
beforehand; if another writer changed the row in between, the write matches
nothing and :class:`~barter.errors.ConflictError` is raised. Nothing here
retries on the caller's behalf.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from .database import Database
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import (
    ITEM_PUBLISHED,
    TRADE_ACCEPTED,
    TRADE_CANCELLED,
    TRADE_COMPLETED,
    TRADE_PENDING,
    TRADE_REJECTED,
    TRADE_STATUSES,
    Event,
    SubstitutionResult,
    TradeConversation,
    utcnow,
)
from .notifications import (
    TRADE_ACCEPTED as TRADE_ACCEPTED_EVENT,
    TRADE_COMPLETED as TRADE_COMPLETED_EVENT,
    TRADE_PROPOSED,
    LoggingNotificationSink,
    NotificationSink,
    publish_safely,
)
from .visibility import VisibilityFilter

_log = logging.getLogger(__name__)


def _dedupe_ids(item_ids: Iterable[str]) -> Tuple[str, ...]:
    if isinstance(item_ids, str):
        raise ValidationError("Item ids must be given as a list")
    ordered: List[str] = []
    for item_id in item_ids:
        if not isinstance(item_id, str) or not item_id.strip():
            raise ValidationError("Item ids must be non-empty strings")
        if item_id not in ordered:
            ordered.append(item_id)
    return tuple(ordered)


class TradeService:
    def __init__(
        self,
        db: Database,
        visibility: VisibilityFilter,
        sink: Optional[NotificationSink] = None,
        *,
        review_window_days: int = 30,
    ) -> None:
        self.db = db
        self.visibility = visibility
        self.sink = sink or LoggingNotificationSink()
        self.review_window_days = review_window_days

    async def propose(
        self,
        requester_id: str,
        owner_id: str,
        requester_item_ids: Iterable[str],
        owner_item_ids: Iterable[str],
    ) -> TradeConversation:
        requester_items = _dedupe_ids(requester_item_ids)
        owner_items = _dedupe_ids(owner_item_ids)
        if not requester_items or not owner_items:
            raise ValidationError("Both sides must offer at least one item")
        if requester_id == owner_id:
            raise ValidationError("Users cannot trade with themselves")
        if set(requester_items) & set(owner_items):
            raise ValidationError("An item cannot be offered by both sides")

        items = await self.db.get_items(requester_items + owner_items)
        missing = [item_id for item_id in requester_items + owner_items if item_id not in items]
        if missing:
            raise NotFoundError(f"Items not found: {', '.join(missing)}")
        for item_id in requester_items:
            if items[item_id].owner_id != requester_id:
                raise AuthorizationError("Requesters can only offer their own items")
        for item_id in owner_items:
            if items[item_id].owner_id != owner_id:
                raise ValidationError(f"Item {item_id} does not belong to the trade partner")
        if await self.visibility.is_hidden_from(requester_id, owner_id):
            raise AuthorizationError("Trades between blocked users are not allowed")
        for item_id in owner_items:
            if not items[item_id].is_listed:
                raise NotFoundError(f"Item {item_id} is no longer listed")
        self._check_tradeable(items[item_id] for item_id in requester_items)

        now = utcnow()
        conversation = TradeConversation(
            id=uuid.uuid4().hex,
            requester_id=requester_id,
            owner_id=owner_id,
            requester_item_ids=requester_items,
            owner_item_ids=owner_items,
            status=TRADE_PENDING,
            created_at=now,
            updated_at=now,
        )
        await self.db.add_conversation(conversation)
        publish_safely(
            self.sink,
            Event(
                TRADE_PROPOSED,
                owner_id,
                {
                    "conversation_id": conversation.id,
                    "requester_id": requester_id,
                    "requester_item_ids": list(requester_items),
                    "owner_item_ids": list(owner_items),
                },
            ),
        )
        return conversation

    @staticmethod
    def _check_tradeable(items) -> None:
        for item in items:
            if item.status != ITEM_PUBLISHED or not item.available:
                raise ValidationError(f"Item {item.id} is not available for trade")

    async def get_conversation(self, conversation_id: str, actor_id: str) -> TradeConversation:
        conversation = await self.db.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Trade {conversation_id} not found")
        if not conversation.is_participant(actor_id):
            raise AuthorizationError("Only trade participants can act on this trade")
        return conversation

    async def _commit(
        self, current: TradeConversation, updated: TradeConversation
    ) -> TradeConversation:
        written = await self.db.update_conversation(
            updated, expected_status=current.status, expected_version=current.version
        )
        if not written:
            raise ConflictError(f"Trade {current.id} was changed by someone else; reload it")
        return updated

    @staticmethod
    def _require_status(conversation: TradeConversation, *allowed: str) -> None:
        if conversation.status not in allowed:
            raise ConflictError(
                f"Trade {conversation.id} is {conversation.status}; expected {' or '.join(allowed)}"
            )

    async def accept(self, conversation_id: str, actor_id: str) -> TradeConversation:
        """Set the actor's acceptance flag; both flags set moves the trade to ``accepted``."""

        conversation = await self.get_conversation(conversation_id, actor_id)
        self._require_status(conversation, TRADE_PENDING)

        flag = "requester_accepted" if actor_id == conversation.requester_id else "owner_accepted"
        if getattr(conversation, flag):
            return conversation

        changes = {flag: True}
        both = (
            conversation.requester_accepted or flag == "requester_accepted"
        ) and (conversation.owner_accepted or flag == "owner_accepted")
        if both:
            changes["status"] = TRADE_ACCEPTED
        updated = dataclasses.replace(
            conversation, updated_at=utcnow(), version=conversation.version + 1, **changes
        )
        updated = await self._commit(conversation, updated)

        if updated.status == TRADE_ACCEPTED:
            _log.info("Trade %s accepted", conversation_id)
            publish_safely(
                self.sink,
                Event(
                    TRADE_ACCEPTED_EVENT,
                    conversation.other_party(actor_id),
                    {"conversation_id": conversation_id, "accepted_by": actor_id},
                ),
            )
        return updated

    async def substitute_items(
        self, conversation_id: str, actor_id: str, new_item_ids: Iterable[str]
    ) -> SubstitutionResult:
        """Replace the actor's offered items, clearing any prior acceptance."""

        new_items = _dedupe_ids(new_item_ids)
        if not new_items:
            raise ValidationError("At least one item must be offered")

        conversation = await self.get_conversation(conversation_id, actor_id)
        items = await self.db.get_items(new_items)
        missing = [item_id for item_id in new_items if item_id not in items]
        if missing:
            raise NotFoundError(f"Items not found: {', '.join(missing)}")
        if any(items[item_id].owner_id != actor_id for item_id in new_items):
            raise AuthorizationError("Users can only offer their own items")

        self._require_status(conversation, TRADE_PENDING, TRADE_ACCEPTED)
        if set(new_items) == set(conversation.offered_by(actor_id)):
            return SubstitutionResult(conversation, changed=False)
        self._check_tradeable(items[item_id] for item_id in new_items)

        side = (
            "requester_item_ids" if actor_id == conversation.requester_id else "owner_item_ids"
        )
        updated = dataclasses.replace(
            conversation,
            requester_accepted=False,
            owner_accepted=False,
            status=TRADE_PENDING,
            updated_at=utcnow(),
            version=conversation.version + 1,
            **{side: new_items},
        )
        updated = await self._commit(conversation, updated)
        _log.info("Trade %s items changed by %s; acceptance reset", conversation_id, actor_id)
        return SubstitutionResult(updated, changed=True)

    async def reject(self, conversation_id: str, actor_id: str) -> TradeConversation:
        conversation = await self.get_conversation(conversation_id, actor_id)
        self._require_status(conversation, TRADE_PENDING)
        updated = dataclasses.replace(
            conversation,
            status=TRADE_REJECTED,
            updated_at=utcnow(),
            version=conversation.version + 1,
        )
        return await self._commit(conversation, updated)

    async def cancel(self, conversation_id: str, actor_id: str) -> TradeConversation:
        conversation = await self.get_conversation(conversation_id, actor_id)
        if actor_id != conversation.requester_id:
            raise AuthorizationError("Only the user who proposed the trade can cancel it")
        self._require_status(conversation, TRADE_PENDING)
        updated = dataclasses.replace(
            conversation,
            status=TRADE_CANCELLED,
            updated_at=utcnow(),
            version=conversation.version + 1,
        )
        return await self._commit(conversation, updated)

    async def complete(
        self, conversation_id: str, actor_id: str, *, now: Optional[datetime] = None
    ) -> TradeConversation:
        """Mark an accepted trade as done; this opens the review window."""

        conversation = await self.get_conversation(conversation_id, actor_id)
        self._require_status(conversation, TRADE_ACCEPTED)
        now = now or utcnow()
        updated = dataclasses.replace(
            conversation,
            status=TRADE_COMPLETED,
            updated_at=now,
            completed_at=now,
            version=conversation.version + 1,
        )
        updated = await self._commit(conversation, updated)

        _log.info("Trade %s completed", conversation_id)
        for user_id in updated.participants:
            partner_id = updated.other_party(user_id)
            score, count = await self.db.rating_summary(partner_id)
            publish_safely(
                self.sink,
                Event(
                    TRADE_COMPLETED_EVENT,
                    user_id,
                    {
                        "conversation_id": conversation_id,
                        "partner_id": partner_id,
                        "partner_rating": [score, count],
                        "review_window_days": self.review_window_days,
                    },
                ),
            )
        return updated

    async def list_conversations(
        self, user_id: str, statuses: Optional[Iterable[str]] = None
    ) -> List[TradeConversation]:
        if statuses is not None:
            statuses = list(statuses)
            unknown = set(statuses) - TRADE_STATUSES
            if unknown:
                raise ValidationError(f"Unknown trade status: {', '.join(sorted(unknown))}")
        return await self.db.list_conversations_for_user(user_id, statuses)

    async def items_in_active_trades(self, user_id: str) -> Set[str]:
        return await self.db.active_trade_item_ids(user_id)
