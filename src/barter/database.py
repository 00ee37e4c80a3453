"""SQLite persistence layer for the trade engine."""
from __future__ import annotations

import asyncio
import json
import os
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import aiosqlite

from .models import (
    ACTIVE_TRADE_STATUSES,
    Block,
    Item,
    Match,
    Rejection,
    Review,
    TradeConversation,
    from_iso,
    to_iso,
)

ITEM_COLUMNS = (
    "id, owner_id, name, category, condition, description, tags, price_min, price_max, "
    "available, status, hidden, looking_for_categories, looking_for_conditions, "
    "looking_for_price_min, looking_for_price_max, looking_for_description, created_at, updated_at"
)

CONVERSATION_COLUMNS = (
    "id, requester_id, owner_id, requester_item_ids, owner_item_ids, requester_accepted, "
    "owner_accepted, status, created_at, updated_at, completed_at, version"
)

#: Item fields an owner may edit directly.
EDITABLE_ITEM_FIELDS = frozenset(
    {
        "name",
        "category",
        "condition",
        "description",
        "tags",
        "price_min",
        "price_max",
        "looking_for_categories",
        "looking_for_conditions",
        "looking_for_price_min",
        "looking_for_price_max",
        "looking_for_description",
    }
)
_LIST_FIELDS = frozenset({"tags", "looking_for_categories", "looking_for_conditions"})


def _placeholders(values: Sequence[object]) -> str:
    return ", ".join("?" for _ in values)


def _row_to_item(row: Sequence) -> Item:
    return Item(
        id=row[0],
        owner_id=row[1],
        name=row[2],
        category=row[3] or "",
        condition=row[4] or "",
        description=row[5] or "",
        tags=tuple(json.loads(row[6] or "[]")),
        price_min=row[7],
        price_max=row[8],
        available=bool(row[9]),
        status=row[10],
        hidden=bool(row[11]),
        looking_for_categories=tuple(json.loads(row[12] or "[]")),
        looking_for_conditions=tuple(json.loads(row[13] or "[]")),
        looking_for_price_min=row[14],
        looking_for_price_max=row[15],
        looking_for_description=row[16] or "",
        created_at=from_iso(row[17]),
        updated_at=from_iso(row[18]),
    )


def _row_to_conversation(row: Sequence) -> TradeConversation:
    return TradeConversation(
        id=row[0],
        requester_id=row[1],
        owner_id=row[2],
        requester_item_ids=tuple(json.loads(row[3])),
        owner_item_ids=tuple(json.loads(row[4])),
        requester_accepted=bool(row[5]),
        owner_accepted=bool(row[6]),
        status=row[7],
        created_at=from_iso(row[8]),
        updated_at=from_iso(row[9]),
        completed_at=from_iso(row[10]),
        version=row[11],
    )


def _row_to_review(row: Sequence) -> Review:
    return Review(
        trade_conversation_id=row[0],
        reviewer_id=row[1],
        reviewee_id=row[2],
        rating=row[3],
        comment=row[4],
        created_at=from_iso(row[5]),
    )


class Database:
    """Data access helper built on top of SQLite.

    Correctness of concurrent trade transitions comes from the conditional
    ``UPDATE ... WHERE status = ? AND version = ?`` writes, not from the
    in-process lock, which only serialises writers on the SQLite file.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = str(path)
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._lock = asyncio.Lock()

    async def setup(self) -> None:
        async with self._connect() as db:
            await db.executescript(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                    user_id TEXT PRIMARY KEY,
                    location TEXT DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    category TEXT DEFAULT '',
                    condition TEXT DEFAULT '',
                    description TEXT DEFAULT '',
                    tags TEXT DEFAULT '[]',
                    price_min REAL,
                    price_max REAL,
                    available INTEGER DEFAULT 1,
                    status TEXT DEFAULT 'published',
                    hidden INTEGER DEFAULT 0,
                    looking_for_categories TEXT DEFAULT '[]',
                    looking_for_conditions TEXT DEFAULT '[]',
                    looking_for_price_min REAL,
                    looking_for_price_max REAL,
                    looking_for_description TEXT DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS items_owner ON items(owner_id);

                CREATE TABLE IF NOT EXISTS likes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, item_id)
                );

                CREATE TABLE IF NOT EXISTS rejections (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    my_item_id TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE UNIQUE INDEX IF NOT EXISTS rejections_unique
                    ON rejections(user_id, item_id, COALESCE(my_item_id, ''));

                CREATE TABLE IF NOT EXISTS blocks (
                    blocker_id TEXT NOT NULL,
                    blocked_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (blocker_id, blocked_id)
                );

                CREATE TABLE IF NOT EXISTS trade_conversations (
                    id TEXT PRIMARY KEY,
                    requester_id TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    requester_item_ids TEXT NOT NULL,
                    owner_item_ids TEXT NOT NULL,
                    requester_accepted INTEGER DEFAULT 0,
                    owner_accepted INTEGER DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS reviews (
                    trade_conversation_id TEXT NOT NULL,
                    reviewer_id TEXT NOT NULL,
                    reviewee_id TEXT NOT NULL,
                    rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    comment TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (trade_conversation_id, reviewer_id)
                );
                """
            )
            await db.commit()

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.path)

    # Profiles

    async def set_location(self, user_id: str, location: str) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO profiles(user_id, location) VALUES (?, ?)\n"
                    "ON CONFLICT(user_id) DO UPDATE SET location = excluded.location",
                    (user_id, location.strip()),
                )
                await db.commit()

    async def get_location(self, user_id: str) -> Optional[str]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT location FROM profiles WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
            return row[0] if row and row[0] else None

    async def get_locations(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT user_id, location FROM profiles WHERE user_id IN ({_placeholders(ids)})",
                ids,
            )
            return {user_id: location for user_id, location in await cursor.fetchall() if location}

    # Items

    async def add_item(self, item: Item) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    f"INSERT INTO items({ITEM_COLUMNS}) VALUES ({_placeholders(range(19))})",
                    (
                        item.id,
                        item.owner_id,
                        item.name,
                        item.category,
                        item.condition,
                        item.description,
                        json.dumps(list(item.tags)),
                        item.price_min,
                        item.price_max,
                        int(item.available),
                        item.status,
                        int(item.hidden),
                        json.dumps(list(item.looking_for_categories)),
                        json.dumps(list(item.looking_for_conditions)),
                        item.looking_for_price_min,
                        item.looking_for_price_max,
                        item.looking_for_description,
                        to_iso(item.created_at),
                        to_iso(item.updated_at),
                    ),
                )
                await db.commit()

    async def get_item(self, item_id: str) -> Optional[Item]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {ITEM_COLUMNS} FROM items WHERE id = ?", (item_id,)
            )
            row = await cursor.fetchone()
            return _row_to_item(row) if row else None

    async def get_items(self, item_ids: Iterable[str]) -> dict[str, Item]:
        ids = list(set(item_ids))
        if not ids:
            return {}
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {ITEM_COLUMNS} FROM items WHERE id IN ({_placeholders(ids)})", ids
            )
            return {row[0]: _row_to_item(row) for row in await cursor.fetchall()}

    async def update_item_fields(self, item_id: str, updated_at: str, **fields) -> bool:
        """Write owner-editable or state columns of an item."""

        allowed = EDITABLE_ITEM_FIELDS | {"available", "hidden", "status"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown item fields: {sorted(unknown)}")

        assignments = []
        values: List[object] = []
        for name, value in fields.items():
            if name in _LIST_FIELDS:
                value = json.dumps(list(value))
            elif name in {"available", "hidden"}:
                value = int(bool(value))
            assignments.append(f"{name} = ?")
            values.append(value)
        assignments.append("updated_at = ?")
        values.extend([updated_at, item_id])

        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    f"UPDATE items SET {', '.join(assignments)} WHERE id = ?", values
                )
                await db.commit()
                return cursor.rowcount > 0

    async def delete_item(self, item_id: str) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute("DELETE FROM items WHERE id = ?", (item_id,))
                await db.execute("DELETE FROM likes WHERE item_id = ?", (item_id,))
                await db.execute(
                    "DELETE FROM rejections WHERE item_id = ? OR my_item_id = ?",
                    (item_id, item_id),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def list_items_for_owner(
        self, owner_id: str, *, hidden: Optional[bool] = None
    ) -> List[Item]:
        query = f"SELECT {ITEM_COLUMNS} FROM items WHERE owner_id = ?"
        params: List[object] = [owner_id]
        if hidden is not None:
            query += " AND hidden = ?"
            params.append(int(hidden))
        query += " ORDER BY created_at DESC, rowid DESC"
        async with self._connect() as db:
            cursor = await db.execute(query, params)
            return [_row_to_item(row) for row in await cursor.fetchall()]

    async def list_candidate_items(
        self,
        viewer_id: str,
        excluded_owners: Set[str],
        excluded_items: Set[str],
    ) -> List[Item]:
        """Listed items of other users, minus the given exclusions, newest first."""

        query = (
            f"SELECT {ITEM_COLUMNS} FROM items\n"
            "WHERE status = 'published' AND available = 1 AND hidden = 0 AND owner_id != ?"
        )
        params: List[object] = [viewer_id]
        if excluded_owners:
            owners = sorted(excluded_owners)
            query += f" AND owner_id NOT IN ({_placeholders(owners)})"
            params.extend(owners)
        if excluded_items:
            items = sorted(excluded_items)
            query += f" AND id NOT IN ({_placeholders(items)})"
            params.extend(items)
        query += " ORDER BY created_at DESC, rowid DESC"

        async with self._connect() as db:
            cursor = await db.execute(query, params)
            return [_row_to_item(row) for row in await cursor.fetchall()]

    # Likes

    async def add_like(self, user_id: str, item_id: str, created_at: str) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO likes(user_id, item_id, created_at) VALUES (?, ?, ?)",
                    (user_id, item_id, created_at),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def remove_like(self, user_id: str, item_id: str) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "DELETE FROM likes WHERE user_id = ? AND item_id = ?", (user_id, item_id)
                )
                await db.commit()
                return cursor.rowcount > 0

    async def has_like(self, user_id: str, item_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT 1 FROM likes WHERE user_id = ? AND item_id = ?", (user_id, item_id)
            )
            return await cursor.fetchone() is not None

    async def list_liked_item_ids(self, user_id: str) -> List[str]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT item_id FROM likes WHERE user_id = ? ORDER BY id", (user_id,)
            )
            return [row[0] for row in await cursor.fetchall()]

    async def first_like_on_owner_items(self, liker_id: str, owner_id: str) -> Optional[str]:
        """Return the earliest item of ``owner_id`` liked by ``liker_id``."""

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT l.item_id FROM likes l JOIN items i ON i.id = l.item_id\n"
                "WHERE l.user_id = ? AND i.owner_id = ? ORDER BY l.id LIMIT 1",
                (liker_id, owner_id),
            )
            row = await cursor.fetchone()
            return row[0] if row else None

    async def list_reciprocal_likes(self, user_id: str) -> List[Match]:
        """Every (my item, their item) pair where both sides liked the other's item."""

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT theirs.owner_id, mine.id, theirs.id,\n"
                "MAX(mine_like.created_at, their_like.created_at) AS matched_at\n"
                "FROM likes mine_like\n"
                "JOIN items theirs ON theirs.id = mine_like.item_id\n"
                "JOIN likes their_like ON their_like.user_id = theirs.owner_id\n"
                "JOIN items mine ON mine.id = their_like.item_id AND mine.owner_id = mine_like.user_id\n"
                "WHERE mine_like.user_id = ? AND theirs.owner_id != ?\n"
                "ORDER BY matched_at DESC, MAX(mine_like.id, their_like.id) DESC",
                (user_id, user_id),
            )
            return [
                Match(
                    user_id=user_id,
                    other_user_id=other_user_id,
                    my_item_id=my_item_id,
                    their_item_id=their_item_id,
                    created_at=from_iso(matched_at),
                )
                for other_user_id, my_item_id, their_item_id, matched_at in await cursor.fetchall()
            ]

    # Rejections

    async def get_rejection(
        self, user_id: str, item_id: str, my_item_id: Optional[str]
    ) -> Optional[Rejection]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT user_id, item_id, my_item_id, created_at FROM rejections\n"
                "WHERE user_id = ? AND item_id = ? AND my_item_id IS ?",
                (user_id, item_id, my_item_id),
            )
            row = await cursor.fetchone()
            return Rejection(row[0], row[1], row[2], from_iso(row[3])) if row else None

    async def add_rejection(
        self, user_id: str, item_id: str, my_item_id: Optional[str], created_at: str
    ) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO rejections(user_id, item_id, my_item_id, created_at)\n"
                    "VALUES (?, ?, ?, ?)",
                    (user_id, item_id, my_item_id, created_at),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def delete_global_rejection(self, user_id: str, item_id: str) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "DELETE FROM rejections WHERE user_id = ? AND item_id = ? AND my_item_id IS NULL",
                    (user_id, item_id),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def delete_rejections(
        self, user_id: str, item_id: str, my_item_id: Optional[str] = None, *, every: bool = False
    ) -> int:
        """Delete one rejection triple, or every record for the item when ``every`` is set."""

        query = "DELETE FROM rejections WHERE user_id = ? AND item_id = ?"
        params: Tuple[object, ...] = (user_id, item_id)
        if not every:
            query += " AND my_item_id IS ?"
            params += (my_item_id,)
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(query, params)
                await db.commit()
                return cursor.rowcount

    async def list_rejections(self, user_id: str) -> List[Rejection]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT user_id, item_id, my_item_id, created_at FROM rejections\n"
                "WHERE user_id = ? ORDER BY id DESC",
                (user_id,),
            )
            return [
                Rejection(row[0], row[1], row[2], from_iso(row[3]))
                for row in await cursor.fetchall()
            ]

    async def rejected_item_ids(self, user_id: str, lens_item_id: Optional[str]) -> Set[str]:
        """Items rejected globally, or specifically while ``lens_item_id`` was the lens."""

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT item_id FROM rejections\n"
                "WHERE user_id = ? AND (my_item_id IS NULL OR my_item_id = ?)",
                (user_id, lens_item_id),
            )
            return {row[0] for row in await cursor.fetchall()}

    # Blocks

    async def add_block(self, blocker_id: str, blocked_id: str, created_at: str) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO blocks(blocker_id, blocked_id, created_at) VALUES (?, ?, ?)",
                    (blocker_id, blocked_id, created_at),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def remove_block(self, blocker_id: str, blocked_id: str) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "DELETE FROM blocks WHERE blocker_id = ? AND blocked_id = ?",
                    (blocker_id, blocked_id),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def list_blocks_by(self, blocker_id: str) -> List[Block]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT blocker_id, blocked_id, created_at FROM blocks\n"
                "WHERE blocker_id = ? ORDER BY created_at DESC",
                (blocker_id,),
            )
            return [Block(row[0], row[1], from_iso(row[2])) for row in await cursor.fetchall()]

    async def block_relations(self, user_id: str) -> Tuple[Set[str], Set[str]]:
        """Return (users blocked by ``user_id``, users who blocked ``user_id``)."""

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT blocker_id, blocked_id FROM blocks WHERE blocker_id = ? OR blocked_id = ?",
                (user_id, user_id),
            )
            rows = await cursor.fetchall()

        blocked_by_me = {blocked for blocker, blocked in rows if blocker == user_id}
        blocked_me = {blocker for blocker, blocked in rows if blocked == user_id}
        return blocked_by_me, blocked_me

    # Trade conversations

    async def add_conversation(self, conversation: TradeConversation) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    f"INSERT INTO trade_conversations({CONVERSATION_COLUMNS})\n"
                    f"VALUES ({_placeholders(range(12))})",
                    (
                        conversation.id,
                        conversation.requester_id,
                        conversation.owner_id,
                        json.dumps(list(conversation.requester_item_ids)),
                        json.dumps(list(conversation.owner_item_ids)),
                        int(conversation.requester_accepted),
                        int(conversation.owner_accepted),
                        conversation.status,
                        to_iso(conversation.created_at),
                        to_iso(conversation.updated_at),
                        to_iso(conversation.completed_at),
                        conversation.version,
                    ),
                )
                await db.commit()

    async def get_conversation(self, conversation_id: str) -> Optional[TradeConversation]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {CONVERSATION_COLUMNS} FROM trade_conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return _row_to_conversation(row) if row else None

    async def update_conversation(
        self, conversation: TradeConversation, *, expected_status: str, expected_version: int
    ) -> bool:
        """Write ``conversation`` only if the stored row still has the expected status and version.

        Returns ``False`` when another writer got there first.
        """

        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE trade_conversations SET requester_item_ids = ?, owner_item_ids = ?,\n"
                    "requester_accepted = ?, owner_accepted = ?, status = ?, updated_at = ?,\n"
                    "completed_at = ?, version = ?\n"
                    "WHERE id = ? AND status = ? AND version = ?",
                    (
                        json.dumps(list(conversation.requester_item_ids)),
                        json.dumps(list(conversation.owner_item_ids)),
                        int(conversation.requester_accepted),
                        int(conversation.owner_accepted),
                        conversation.status,
                        to_iso(conversation.updated_at),
                        to_iso(conversation.completed_at),
                        conversation.version,
                        conversation.id,
                        expected_status,
                        expected_version,
                    ),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def list_conversations_for_user(
        self, user_id: str, statuses: Optional[Iterable[str]] = None
    ) -> List[TradeConversation]:
        query = (
            f"SELECT {CONVERSATION_COLUMNS} FROM trade_conversations\n"
            "WHERE (requester_id = ? OR owner_id = ?)"
        )
        params: List[object] = [user_id, user_id]
        if statuses is not None:
            wanted = list(statuses)
            if not wanted:
                return []
            query += f" AND status IN ({_placeholders(wanted)})"
            params.extend(wanted)
        query += " ORDER BY updated_at DESC, rowid DESC"
        async with self._connect() as db:
            cursor = await db.execute(query, params)
            return [_row_to_conversation(row) for row in await cursor.fetchall()]

    async def active_trade_item_ids(self, user_id: str) -> Set[str]:
        conversations = await self.list_conversations_for_user(user_id, ACTIVE_TRADE_STATUSES)
        item_ids: Set[str] = set()
        for conversation in conversations:
            item_ids.update(conversation.all_item_ids)
        return item_ids

    # Reviews

    async def add_review(self, review: Review) -> bool:
        """Insert a review; ``False`` when the reviewer already reviewed this trade."""

        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO reviews(trade_conversation_id, reviewer_id, reviewee_id,\n"
                    "rating, comment, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        review.trade_conversation_id,
                        review.reviewer_id,
                        review.reviewee_id,
                        review.rating,
                        review.comment,
                        to_iso(review.created_at),
                    ),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def get_review(self, conversation_id: str, reviewer_id: str) -> Optional[Review]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT trade_conversation_id, reviewer_id, reviewee_id, rating, comment, created_at\n"
                "FROM reviews WHERE trade_conversation_id = ? AND reviewer_id = ?",
                (conversation_id, reviewer_id),
            )
            row = await cursor.fetchone()
            return _row_to_review(row) if row else None

    async def list_reviews(
        self, *, conversation_id: Optional[str] = None, reviewee_id: Optional[str] = None
    ) -> List[Review]:
        clauses = []
        params: List[object] = []
        if conversation_id is not None:
            clauses.append("trade_conversation_id = ?")
            params.append(conversation_id)
        if reviewee_id is not None:
            clauses.append("reviewee_id = ?")
            params.append(reviewee_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT trade_conversation_id, reviewer_id, reviewee_id, rating, comment, created_at\n"
                f"FROM reviews {where} ORDER BY created_at DESC",
                params,
            )
            return [_row_to_review(row) for row in await cursor.fetchall()]

    async def rating_summary(self, reviewee_id: str) -> Tuple[float, int]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COALESCE(AVG(rating), 0), COUNT(*) FROM reviews WHERE reviewee_id = ?",
                (reviewee_id,),
            )
            row = await cursor.fetchone()
            return (float(row[0]), int(row[1])) if row else (0.0, 0)
