"""Domain records shared by the engine services."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

ITEM_DRAFT = "draft"
ITEM_PUBLISHED = "published"
ITEM_REMOVED = "removed"

TRADE_PENDING = "pending"
TRADE_ACCEPTED = "accepted"
TRADE_COMPLETED = "completed"
TRADE_REJECTED = "rejected"
TRADE_CANCELLED = "cancelled"
TRADE_STATUSES = frozenset(
    {TRADE_PENDING, TRADE_ACCEPTED, TRADE_COMPLETED, TRADE_REJECTED, TRADE_CANCELLED}
)
#: Conversations in these states still hold their offered items.
ACTIVE_TRADE_STATUSES = (TRADE_PENDING, TRADE_ACCEPTED)
TERMINAL_TRADE_STATUSES = frozenset({TRADE_COMPLETED, TRADE_REJECTED, TRADE_CANCELLED})

MODERATOR_ROLE = "moderator"
NATIONWIDE = "nationwide"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Actor:
    """Authenticated identity plus the role claims attached to it."""

    user_id: str
    roles: frozenset = frozenset()

    @property
    def is_moderator(self) -> bool:
        return MODERATOR_ROLE in self.roles


@dataclass(frozen=True)
class Point:
    lat: float
    lng: float


@dataclass(frozen=True)
class Item:
    """An offer listed by its owner, with what the owner wants in return."""

    id: str
    owner_id: str
    name: str
    category: str = ""
    condition: str = ""
    description: str = ""
    tags: Tuple[str, ...] = ()
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    available: bool = True
    status: str = ITEM_PUBLISHED
    hidden: bool = False
    looking_for_categories: Tuple[str, ...] = ()
    looking_for_conditions: Tuple[str, ...] = ()
    looking_for_price_min: Optional[float] = None
    looking_for_price_max: Optional[float] = None
    looking_for_description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_listed(self) -> bool:
        """True when the item may be shown to other users as a candidate."""
        return self.status == ITEM_PUBLISHED and self.available and not self.hidden


@dataclass(frozen=True)
class Rejection:
    user_id: str
    item_id: str
    my_item_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_global(self) -> bool:
        return self.my_item_id is None


@dataclass(frozen=True)
class Block:
    blocker_id: str
    blocked_id: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Match:
    """A reciprocal like between two users, derived from like records."""

    user_id: str
    other_user_id: str
    my_item_id: str
    their_item_id: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class LikeResult:
    created: bool
    match: Optional[Match] = None


@dataclass(frozen=True)
class TradeConversation:
    id: str
    requester_id: str
    owner_id: str
    requester_item_ids: Tuple[str, ...]
    owner_item_ids: Tuple[str, ...]
    requester_accepted: bool = False
    owner_accepted: bool = False
    status: str = TRADE_PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0

    @property
    def participants(self) -> Tuple[str, str]:
        return (self.requester_id, self.owner_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRADE_STATUSES

    @property
    def all_item_ids(self) -> Tuple[str, ...]:
        return self.requester_item_ids + self.owner_item_ids

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_party(self, user_id: str) -> str:
        return self.owner_id if user_id == self.requester_id else self.requester_id

    def offered_by(self, user_id: str) -> Tuple[str, ...]:
        if user_id == self.requester_id:
            return self.requester_item_ids
        return self.owner_item_ids


@dataclass(frozen=True)
class SubstitutionResult:
    conversation: TradeConversation
    changed: bool


@dataclass(frozen=True)
class Review:
    trade_conversation_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Eligibility:
    can_review: bool
    days_left: int


@dataclass(frozen=True)
class Event:
    """Notification payload handed to a sink; delivery is not awaited."""

    kind: str
    recipient_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
