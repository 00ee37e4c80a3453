"""Candidate selection, likes, rejections and derived matches."""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Dict, Iterable, List, Optional, Union

import aiosqlite

from .database import Database
from .errors import AuthorizationError, NotFoundError, ValidationError
from .geo import GeoResolver, distance_miles
from .models import (
    NATIONWIDE,
    Event,
    Item,
    LikeResult,
    Match,
    Point,
    Rejection,
    to_iso,
    utcnow,
)
from .notifications import MATCH_CREATED, LoggingNotificationSink, NotificationSink, publish_safely
from .visibility import VisibilityFilter

_log = logging.getLogger(__name__)

RadiusSelector = Union[str, int, float]


def _normalize_text(value: str) -> str:
    return " ".join(value.lower().split())


def parse_radius(selector: RadiusSelector) -> Optional[float]:
    """Return the radius in miles, or ``None`` for a nationwide search."""

    if isinstance(selector, bool):
        raise ValidationError("Radius must be 'nationwide' or a number of miles")
    if isinstance(selector, str):
        text = selector.strip().lower()
        if text == NATIONWIDE:
            return None
        try:
            selector = float(text)
        except ValueError:
            raise ValidationError(f"Unknown radius {selector!r}") from None
    if not isinstance(selector, (int, float)) or not math.isfinite(selector) or selector <= 0:
        raise ValidationError("Radius must be a positive number of miles")
    return float(selector)


def _accepts(wanted: Iterable[str], actual: str) -> bool:
    """An empty wish list or an empty value never excludes."""

    wanted = {_normalize_text(value) for value in wanted if value.strip()}
    if not wanted or not actual.strip():
        return True
    return _normalize_text(actual) in wanted


def ranges_overlap(
    a_min: Optional[float], a_max: Optional[float], b_min: Optional[float], b_max: Optional[float]
) -> bool:
    """Closed-interval overlap where a missing bound is unbounded on that side."""

    low_a = -math.inf if a_min is None else a_min
    high_a = math.inf if a_max is None else a_max
    low_b = -math.inf if b_min is None else b_min
    high_b = math.inf if b_max is None else b_max
    return low_a <= high_b and low_b <= high_a


def _price_ok(wanting: Item, offered: Item) -> bool:
    if wanting.looking_for_price_min is None and wanting.looking_for_price_max is None:
        return True
    return ranges_overlap(
        offered.price_min,
        offered.price_max,
        wanting.looking_for_price_min,
        wanting.looking_for_price_max,
    )


def preferences_compatible(lens: Item, candidate: Item) -> bool:
    """Each side's declared wishes must admit the other side's item."""

    return (
        _accepts(lens.looking_for_categories, candidate.category)
        and _accepts(candidate.looking_for_categories, lens.category)
        and _accepts(lens.looking_for_conditions, candidate.condition)
        and _accepts(candidate.looking_for_conditions, lens.condition)
        and _price_ok(lens, candidate)
        and _price_ok(candidate, lens)
    )


class MatchingEngine:
    def __init__(
        self,
        db: Database,
        visibility: VisibilityFilter,
        geo: GeoResolver,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        self.db = db
        self.visibility = visibility
        self.geo = geo
        self.sink = sink or LoggingNotificationSink()

    async def find_candidates(
        self,
        lens_item_id: str,
        viewer_id: str,
        radius_selector: RadiusSelector = NATIONWIDE,
        *,
        limit: Optional[int] = None,
    ) -> List[Item]:
        """Items the viewer could trade ``lens_item_id`` for, newest first."""

        radius = parse_radius(radius_selector)
        lens = await self.db.get_item(lens_item_id)
        if lens is None:
            raise NotFoundError(f"Item {lens_item_id} not found")
        if lens.owner_id != viewer_id:
            raise AuthorizationError("The lens item must belong to the viewer")

        excluded_owners = await self.visibility.excluded_owners(viewer_id)
        excluded_items = await self.visibility.excluded_items(viewer_id, lens.id)
        locked_items = await self.db.active_trade_item_ids(viewer_id)

        pool = await self.db.list_candidate_items(
            viewer_id, excluded_owners, excluded_items | locked_items
        )
        candidates = [
            item
            for item in pool
            if item.id != lens.id and item.is_listed and preferences_compatible(lens, item)
        ]

        if radius is not None:
            candidates = await self._within_radius(viewer_id, candidates, radius)

        seen = set()
        ordered: List[Item] = []
        for item in candidates:
            if item.id in seen:
                continue
            seen.add(item.id)
            ordered.append(item)
            if limit is not None and len(ordered) >= limit:
                break
        return ordered

    async def _within_radius(self, viewer_id: str, items: List[Item], radius: float) -> List[Item]:
        viewer_point = await self.geo.resolve(await self.db.get_location(viewer_id))
        if viewer_point is None:
            return items

        locations = await self.db.get_locations(item.owner_id for item in items)
        distinct = sorted(set(locations.values()))
        resolved = await asyncio.gather(*(self.geo.resolve(location) for location in distinct))
        points: Dict[str, Optional[Point]] = dict(zip(distinct, resolved))

        kept = []
        for item in items:
            point = points.get(locations.get(item.owner_id))
            if point is None or distance_miles(viewer_point, point) <= radius:
                kept.append(item)
        return kept

    async def is_mutual(self, user_a: str, item_b: str, user_b: str, item_a: str) -> bool:
        """True when A liked ``item_b`` and B liked ``item_a``."""

        return await self.db.has_like(user_a, item_b) and await self.db.has_like(user_b, item_a)

    async def like_item(self, user_id: str, item_id: str) -> LikeResult:
        item = await self.db.get_item(item_id)
        if item is None or not item.is_listed:
            raise NotFoundError(f"Item {item_id} not found")
        if item.owner_id == user_id:
            raise ValidationError("Users cannot like their own items")
        if await self.visibility.is_hidden_from(user_id, item.owner_id):
            raise NotFoundError(f"Item {item_id} not found")

        now = utcnow()
        created = await self.db.add_like(user_id, item_id, to_iso(now))
        if not created:
            return LikeResult(created=False)

        my_item_id = await self.db.first_like_on_owner_items(item.owner_id, user_id)
        if my_item_id is None:
            return LikeResult(created=True)

        match = Match(
            user_id=user_id,
            other_user_id=item.owner_id,
            my_item_id=my_item_id,
            their_item_id=item_id,
            created_at=now,
        )
        _log.info("Match between %s and %s on items %s/%s", user_id, item.owner_id, my_item_id, item_id)
        publish_safely(
            self.sink,
            Event(
                MATCH_CREATED,
                user_id,
                {"other_user_id": item.owner_id, "my_item_id": my_item_id, "their_item_id": item_id},
            ),
        )
        publish_safely(
            self.sink,
            Event(
                MATCH_CREATED,
                item.owner_id,
                {"other_user_id": user_id, "my_item_id": item_id, "their_item_id": my_item_id},
            ),
        )
        return LikeResult(created=True, match=match)

    async def unlike_item(self, user_id: str, item_id: str) -> bool:
        return await self.db.remove_like(user_id, item_id)

    async def liked_items(self, user_id: str) -> List[Item]:
        item_ids = await self.db.list_liked_item_ids(user_id)
        items = await self.db.get_items(item_ids)
        return [items[item_id] for item_id in item_ids if item_id in items]

    async def list_matches(self, user_id: str) -> List[Match]:
        """Recompute every reciprocal pair for ``user_id`` from the like records."""

        excluded = await self.visibility.excluded_owners(user_id)
        return [
            match
            for match in await self.db.list_reciprocal_likes(user_id)
            if match.other_user_id not in excluded
        ]

    async def reject_item(
        self, user_id: str, item_id: str, my_item_id: Optional[str] = None
    ) -> Rejection:
        """Hide ``item_id`` from the user, globally or only while ``my_item_id`` is the lens."""

        item = await self.db.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        if item.owner_id == user_id:
            raise ValidationError("Users cannot reject their own items")
        if my_item_id is not None:
            my_item = await self.db.get_item(my_item_id)
            if my_item is None:
                raise NotFoundError(f"Item {my_item_id} not found")
            if my_item.owner_id != user_id:
                raise AuthorizationError("The lens item must belong to the rejecting user")

        existing = await self.db.get_rejection(user_id, item_id, my_item_id)
        if existing is not None:
            return existing

        now = utcnow()
        await self.db.add_rejection(user_id, item_id, my_item_id, to_iso(now))
        if my_item_id is not None:
            try:
                await self.db.delete_global_rejection(user_id, item_id)
            except aiosqlite.Error:
                _log.warning(
                    "Failed to clear global rejection of %s by %s", item_id, user_id, exc_info=True
                )

        stored = await self.db.get_rejection(user_id, item_id, my_item_id)
        return stored or Rejection(user_id, item_id, my_item_id, now)

    async def undo_rejection(
        self, user_id: str, item_id: str, my_item_id: Optional[str] = None
    ) -> int:
        """Remove one pair-specific rejection, or every rejection of the item when no lens is given."""

        return await self.db.delete_rejections(
            user_id, item_id, my_item_id, every=my_item_id is None
        )

    async def rejected_items(self, user_id: str) -> List[Rejection]:
        return await self.db.list_rejections(user_id)
