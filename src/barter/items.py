"""Item lifecycle: listing, owner edits, soft-hiding and moderation removal."""
from __future__ import annotations

import logging
import uuid
from typing import Iterable, List, Optional

from .database import EDITABLE_ITEM_FIELDS, Database
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import (
    ITEM_DRAFT,
    ITEM_PUBLISHED,
    ITEM_REMOVED,
    Actor,
    Event,
    Item,
    to_iso,
    utcnow,
)
from .notifications import ITEM_REMOVED as ITEM_REMOVED_EVENT
from .notifications import LoggingNotificationSink, NotificationSink, publish_safely

_log = logging.getLogger(__name__)


def _clean_list(values: Iterable[str]) -> tuple:
    cleaned = []
    for value in values:
        text = " ".join(str(value).split())
        if text and text not in cleaned:
            cleaned.append(text)
    return tuple(cleaned)


def _check_range(low: Optional[float], high: Optional[float], label: str) -> None:
    for bound in (low, high):
        if bound is not None and bound < 0:
            raise ValidationError(f"{label} cannot be negative")
    if low is not None and high is not None and low > high:
        raise ValidationError(f"{label} minimum is greater than its maximum")


class ItemService:
    def __init__(self, db: Database, sink: Optional[NotificationSink] = None) -> None:
        self.db = db
        self.sink = sink or LoggingNotificationSink()

    async def create_item(
        self,
        owner_id: str,
        name: str,
        *,
        category: str = "",
        condition: str = "",
        description: str = "",
        tags: Iterable[str] = (),
        price_min: Optional[float] = None,
        price_max: Optional[float] = None,
        looking_for_categories: Iterable[str] = (),
        looking_for_conditions: Iterable[str] = (),
        looking_for_price_min: Optional[float] = None,
        looking_for_price_max: Optional[float] = None,
        looking_for_description: str = "",
        status: str = ITEM_PUBLISHED,
        available: bool = True,
    ) -> Item:
        name = name.strip()
        if not name:
            raise ValidationError("Item name is required")
        if status not in (ITEM_DRAFT, ITEM_PUBLISHED):
            raise ValidationError("New items must be draft or published")
        _check_range(price_min, price_max, "Price range")
        _check_range(looking_for_price_min, looking_for_price_max, "Wanted price range")

        now = utcnow()
        item = Item(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            name=name,
            category=category.strip(),
            condition=condition.strip(),
            description=description.strip(),
            tags=_clean_list(tags),
            price_min=price_min,
            price_max=price_max,
            available=available,
            status=status,
            hidden=False,
            looking_for_categories=_clean_list(looking_for_categories),
            looking_for_conditions=_clean_list(looking_for_conditions),
            looking_for_price_min=looking_for_price_min,
            looking_for_price_max=looking_for_price_max,
            looking_for_description=looking_for_description.strip(),
            created_at=now,
            updated_at=now,
        )
        await self.db.add_item(item)
        return item

    async def get_item(self, item_id: str) -> Item:
        item = await self.db.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    async def _owned_item(self, actor_id: str, item_id: str) -> Item:
        item = await self.get_item(item_id)
        if item.owner_id != actor_id:
            raise AuthorizationError("Only the owner can change this item")
        return item

    async def _write(self, item_id: str, **fields) -> Item:
        if not await self.db.update_item_fields(item_id, to_iso(utcnow()), **fields):
            raise NotFoundError(f"Item {item_id} not found")
        return await self.get_item(item_id)

    async def update_item(self, actor_id: str, item_id: str, **changes) -> Item:
        """Apply owner edits; only descriptive and preference fields are accepted."""

        unknown = set(changes) - EDITABLE_ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "name" in changes:
            changes["name"] = str(changes["name"]).strip()
            if not changes["name"]:
                raise ValidationError("Item name is required")
        for field_name in ("tags", "looking_for_categories", "looking_for_conditions"):
            if field_name in changes:
                changes[field_name] = _clean_list(changes[field_name])

        item = await self._owned_item(actor_id, item_id)
        if item.status == ITEM_REMOVED:
            raise ConflictError("Removed items cannot be edited")
        _check_range(
            changes.get("price_min", item.price_min),
            changes.get("price_max", item.price_max),
            "Price range",
        )
        _check_range(
            changes.get("looking_for_price_min", item.looking_for_price_min),
            changes.get("looking_for_price_max", item.looking_for_price_max),
            "Wanted price range",
        )
        if not changes:
            return item
        return await self._write(item_id, **changes)

    async def set_hidden(self, actor_id: str, item_id: str, hidden: bool) -> Item:
        item = await self._owned_item(actor_id, item_id)
        if item.hidden == hidden:
            return item
        return await self._write(item_id, hidden=hidden)

    async def set_available(self, actor_id: str, item_id: str, available: bool) -> Item:
        item = await self._owned_item(actor_id, item_id)
        if item.available == available:
            return item
        return await self._write(item_id, available=available)

    async def publish_item(self, actor_id: str, item_id: str) -> Item:
        item = await self._owned_item(actor_id, item_id)
        if item.status == ITEM_REMOVED:
            raise ConflictError("Removed items cannot be republished")
        if item.status == ITEM_PUBLISHED:
            return item
        return await self._write(item_id, status=ITEM_PUBLISHED)

    async def unpublish_item(self, actor_id: str, item_id: str) -> Item:
        item = await self._owned_item(actor_id, item_id)
        if item.status == ITEM_REMOVED:
            raise ConflictError("Removed items cannot be moved back to draft")
        if item.status == ITEM_DRAFT:
            return item
        return await self._write(item_id, status=ITEM_DRAFT)

    async def remove_item(self, actor: Actor, item_id: str, reason: str = "") -> Item:
        """Force an item into ``removed``; requires the moderator role claim."""

        if not actor.is_moderator:
            raise AuthorizationError("Only moderators can remove items")
        item = await self.get_item(item_id)
        if item.status == ITEM_REMOVED:
            return item

        removed = await self._write(item_id, status=ITEM_REMOVED)
        _log.info("Item %s removed by moderator %s", item_id, actor.user_id)
        publish_safely(
            self.sink,
            Event(
                ITEM_REMOVED_EVENT,
                item.owner_id,
                {"item_id": item_id, "reason": reason.strip(), "moderator_id": actor.user_id},
            ),
        )
        return removed

    async def delete_item(self, actor_id: str, item_id: str) -> None:
        await self._owned_item(actor_id, item_id)
        if not await self.db.delete_item(item_id):
            raise NotFoundError(f"Item {item_id} not found")

    async def list_items(self, owner_id: str) -> List[Item]:
        return await self.db.list_items_for_owner(owner_id)

    async def list_hidden_items(self, owner_id: str) -> List[Item]:
        return await self.db.list_items_for_owner(owner_id, hidden=True)
