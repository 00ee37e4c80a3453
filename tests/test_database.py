import dataclasses
from pathlib import Path

import pytest

from barter.database import Database
from barter.models import Item, Review, TradeConversation, to_iso, utcnow

pytestmark = pytest.mark.asyncio


async def init_db(tmp_path: Path) -> Database:
    db = Database(tmp_path / "test.db")
    await db.setup()
    return db


def make_item(item_id: str, owner_id: str, **overrides) -> Item:
    now = utcnow()
    fields = dict(id=item_id, owner_id=owner_id, name=f"Item {item_id}", created_at=now, updated_at=now)
    fields.update(overrides)
    return Item(**fields)


async def test_item_round_trip(tmp_path: Path):
    db = await init_db(tmp_path)
    item = make_item(
        "i1",
        "alice",
        category="Electronics",
        tags=("camera", "vintage"),
        price_min=50.0,
        looking_for_categories=("Fashion",),
        hidden=True,
    )
    await db.add_item(item)

    stored = await db.get_item("i1")
    assert stored == item
    assert await db.get_item("missing") is None

    assert await db.update_item_fields("i1", to_iso(utcnow()), hidden=False, tags=["lens"])
    stored = await db.get_item("i1")
    assert stored.hidden is False
    assert stored.tags == ("lens",)

    with pytest.raises(ValueError):
        await db.update_item_fields("i1", to_iso(utcnow()), owner_id="mallory")


async def test_setup_is_idempotent(tmp_path: Path):
    db = await init_db(tmp_path)
    await db.add_item(make_item("i1", "alice"))
    await db.setup()
    assert await db.get_item("i1") is not None


async def test_locations(tmp_path: Path):
    db = await init_db(tmp_path)
    await db.set_location("alice", " 98101 ")
    await db.set_location("bob", "47.6,-122.3")
    await db.set_location("bob", "34.0,-118.2")

    assert await db.get_location("alice") == "98101"
    assert await db.get_location("nobody") is None
    assert await db.get_locations(["alice", "bob", "nobody"]) == {
        "alice": "98101",
        "bob": "34.0,-118.2",
    }


async def test_likes_are_unique(tmp_path: Path):
    db = await init_db(tmp_path)
    await db.add_item(make_item("i1", "alice"))
    now = to_iso(utcnow())

    assert await db.add_like("bob", "i1", now)
    assert await db.add_like("bob", "i1", now) is False
    assert await db.has_like("bob", "i1")
    assert await db.first_like_on_owner_items("bob", "alice") == "i1"

    assert await db.remove_like("bob", "i1")
    assert await db.has_like("bob", "i1") is False
    assert await db.first_like_on_owner_items("bob", "alice") is None


async def test_global_rejection_is_unique(tmp_path: Path):
    db = await init_db(tmp_path)
    now = to_iso(utcnow())

    assert await db.add_rejection("alice", "i1", None, now)
    assert await db.add_rejection("alice", "i1", None, now) is False
    assert await db.add_rejection("alice", "i1", "mine", now)

    assert await db.rejected_item_ids("alice", None) == {"i1"}
    assert len(await db.list_rejections("alice")) == 2

    assert await db.delete_global_rejection("alice", "i1")
    assert await db.rejected_item_ids("alice", None) == set()
    assert await db.rejected_item_ids("alice", "mine") == {"i1"}


async def test_block_relations(tmp_path: Path):
    db = await init_db(tmp_path)
    now = to_iso(utcnow())
    await db.add_block("alice", "bob", now)
    await db.add_block("carol", "alice", now)

    blocked_by_me, blocked_me = await db.block_relations("alice")
    assert blocked_by_me == {"bob"}
    assert blocked_me == {"carol"}


async def test_conversation_update_is_guarded(tmp_path: Path):
    db = await init_db(tmp_path)
    now = utcnow()
    conversation = TradeConversation(
        id="t1",
        requester_id="alice",
        owner_id="bob",
        requester_item_ids=("a1",),
        owner_item_ids=("b1", "b2"),
        created_at=now,
        updated_at=now,
    )
    await db.add_conversation(conversation)
    assert await db.get_conversation("t1") == conversation

    first = dataclasses.replace(conversation, owner_accepted=True, version=1)
    assert await db.update_conversation(first, expected_status="pending", expected_version=0)

    stale = dataclasses.replace(conversation, requester_accepted=True, version=1)
    assert not await db.update_conversation(stale, expected_status="pending", expected_version=0)

    stored = await db.get_conversation("t1")
    assert stored.owner_accepted is True
    assert stored.requester_accepted is False
    assert await db.active_trade_item_ids("bob") == {"a1", "b1", "b2"}


async def test_review_uniqueness(tmp_path: Path):
    db = await init_db(tmp_path)
    review = Review("t1", "alice", "bob", 5, "Great swap", utcnow())

    assert await db.add_review(review)
    assert await db.add_review(dataclasses.replace(review, rating=1)) is False

    stored = await db.get_review("t1", "alice")
    assert stored.rating == 5
    assert await db.rating_summary("bob") == (5.0, 1)
    assert await db.rating_summary("alice") == (0.0, 0)
