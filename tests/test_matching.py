import logging

import aiosqlite
import pytest

from barter.errors import AuthorizationError, NotFoundError, ValidationError
from barter.matching import parse_radius, preferences_compatible, ranges_overlap
from barter.models import Actor, Item, Point

pytestmark = pytest.mark.asyncio


def _ids(items):
    return [item.id for item in items]


async def test_reciprocal_categories(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item(
        "alice", "Camera", category="Electronics", looking_for_categories=["Fashion"]
    )
    jacket = await engine.items.create_item(
        "bob", "Jacket", category="Fashion", looking_for_categories=["Electronics"]
    )
    await engine.items.create_item(
        "carol", "Dress", category="Fashion", looking_for_categories=["Home"]
    )
    await engine.items.create_item("dave", "Lamp", category="Home")

    candidates = await engine.matching.find_candidates(lens.id, "alice")
    assert _ids(candidates) == [jacket.id]


async def test_category_matching_ignores_case_and_empty_values(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item(
        "alice", "Camera", category="Electronics", looking_for_categories=["fashion "]
    )
    uncategorised = await engine.items.create_item("bob", "Mystery box")
    jacket = await engine.items.create_item("carol", "Jacket", category="FASHION")

    candidates = await engine.matching.find_candidates(lens.id, "alice")
    assert set(_ids(candidates)) == {uncategorised.id, jacket.id}


async def test_condition_and_price_filters(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item(
        "alice",
        "Bike",
        condition="Used",
        price_min=100,
        price_max=200,
        looking_for_conditions=["New", "Like new"],
        looking_for_price_min=150,
    )
    fits = await engine.items.create_item("bob", "Drone", condition="New", price_min=120, price_max=180)
    await engine.items.create_item("carol", "Phone", condition="Used", price_min=300)
    await engine.items.create_item("dave", "Cheap thing", condition="New", price_max=100)
    await engine.items.create_item(
        "erin", "Guitar", condition="Like new", price_min=500, looking_for_price_min=400
    )

    candidates = await engine.matching.find_candidates(lens.id, "alice")
    assert _ids(candidates) == [fits.id]


async def test_unlisted_items_are_never_candidates(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")
    visible = await engine.items.create_item("bob", "Visible")
    await engine.items.create_item("bob", "Draft", status="draft")
    hidden = await engine.items.create_item("bob", "Hidden")
    await engine.items.set_hidden("bob", hidden.id, True)
    gone = await engine.items.create_item("bob", "Unavailable")
    await engine.items.set_available("bob", gone.id, False)
    removed = await engine.items.create_item("bob", "Removed")
    await engine.items.remove_item(Actor("mod", frozenset({"moderator"})), removed.id)
    await engine.items.create_item("alice", "Another of mine")

    candidates = await engine.matching.find_candidates(lens.id, "alice")
    assert _ids(candidates) == [visible.id]


async def test_candidates_are_newest_first(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")
    first = await engine.items.create_item("bob", "First")
    second = await engine.items.create_item("carol", "Second")
    third = await engine.items.create_item("bob", "Third")

    candidates = await engine.matching.find_candidates(lens.id, "alice")
    assert _ids(candidates) == [third.id, second.id, first.id]

    limited = await engine.matching.find_candidates(lens.id, "alice", limit=2)
    assert _ids(limited) == [third.id, second.id]


async def test_lens_must_belong_to_viewer(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")

    with pytest.raises(AuthorizationError):
        await engine.matching.find_candidates(lens.id, "bob")
    with pytest.raises(NotFoundError):
        await engine.matching.find_candidates("missing", "alice")


async def test_block_hides_items_in_both_directions(make_engine):
    engine = await make_engine()
    alice_lens = await engine.items.create_item("alice", "Camera")
    bob_lens = await engine.items.create_item("bob", "Jacket")
    carol_item = await engine.items.create_item("carol", "Lamp")

    await engine.blocks.block_user("alice", "bob")

    assert _ids(await engine.matching.find_candidates(alice_lens.id, "alice")) == [carol_item.id]
    assert _ids(await engine.matching.find_candidates(bob_lens.id, "bob")) == [carol_item.id]

    await engine.blocks.unblock_user("alice", "bob")
    assert bob_lens.id in _ids(await engine.matching.find_candidates(alice_lens.id, "alice"))


async def test_pair_specific_rejection(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")
    other_lens = await engine.items.create_item("alice", "Bike")
    target = await engine.items.create_item("bob", "Jacket")

    assert (await engine.matching.reject_item("alice", target.id)).is_global
    assert target.id not in _ids(await engine.matching.find_candidates(other_lens.id, "alice"))

    rejection = await engine.matching.reject_item("alice", target.id, lens.id)
    assert rejection.my_item_id == lens.id and not rejection.is_global

    assert target.id not in _ids(await engine.matching.find_candidates(lens.id, "alice"))
    # The global record was superseded, so other lenses see the item again.
    assert target.id in _ids(await engine.matching.find_candidates(other_lens.id, "alice"))
    stored = await engine.matching.rejected_items("alice")
    assert [(r.item_id, r.my_item_id) for r in stored] == [(target.id, lens.id)]


async def test_pair_specific_rejection_is_idempotent(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")
    target = await engine.items.create_item("bob", "Jacket")

    first = await engine.matching.reject_item("alice", target.id, lens.id)
    second = await engine.matching.reject_item("alice", target.id, lens.id)

    assert first == second
    assert len(await engine.matching.rejected_items("alice")) == 1


async def test_failed_global_cleanup_keeps_pair_rejection(make_engine, monkeypatch, caplog):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")
    target = await engine.items.create_item("bob", "Jacket")

    async def locked(user_id, item_id):
        raise aiosqlite.OperationalError("database is locked")

    monkeypatch.setattr(engine.db, "delete_global_rejection", locked)
    with caplog.at_level(logging.WARNING, logger="barter.matching"):
        rejection = await engine.matching.reject_item("alice", target.id, lens.id)

    assert (rejection.item_id, rejection.my_item_id) == (target.id, lens.id)
    assert await engine.db.get_rejection("alice", target.id, lens.id) == rejection
    assert "Failed to clear global rejection" in caplog.text


async def test_rejection_validation(make_engine):
    engine = await make_engine()
    mine = await engine.items.create_item("alice", "Camera")
    theirs = await engine.items.create_item("bob", "Jacket")

    with pytest.raises(ValidationError):
        await engine.matching.reject_item("alice", mine.id)
    with pytest.raises(AuthorizationError):
        await engine.matching.reject_item("carol", mine.id, theirs.id)
    with pytest.raises(NotFoundError):
        await engine.matching.reject_item("alice", "missing")


async def test_undo_rejection(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")
    other_lens = await engine.items.create_item("alice", "Bike")
    target = await engine.items.create_item("bob", "Jacket")

    await engine.matching.reject_item("alice", target.id, lens.id)
    await engine.matching.reject_item("alice", target.id, other_lens.id)

    assert await engine.matching.undo_rejection("alice", target.id, lens.id) == 1
    assert target.id in _ids(await engine.matching.find_candidates(lens.id, "alice"))
    assert target.id not in _ids(await engine.matching.find_candidates(other_lens.id, "alice"))

    await engine.matching.reject_item("alice", target.id)
    assert await engine.matching.undo_rejection("alice", target.id) == 2
    assert await engine.matching.rejected_items("alice") == []


async def test_items_in_active_trades_are_not_candidates(make_engine):
    engine = await make_engine()
    lens = await engine.items.create_item("alice", "Camera")
    offered = await engine.items.create_item("alice", "Bike")
    wanted = await engine.items.create_item("bob", "Jacket")
    free = await engine.items.create_item("bob", "Lamp")

    conversation = await engine.trades.propose("alice", "bob", [offered.id], [wanted.id])
    assert _ids(await engine.matching.find_candidates(lens.id, "alice")) == [free.id]

    await engine.trades.reject(conversation.id, "bob")
    assert set(_ids(await engine.matching.find_candidates(lens.id, "alice"))) == {free.id, wanted.id}


async def test_radius_filter(make_engine, geocoder):
    engine = await make_engine()
    geocoder.points["98101"] = Point(47.61, -122.33)
    await engine.set_location("alice", "47.6,-122.3")
    await engine.set_location("bob", "34.0,-118.2")
    await engine.set_location("carol", "98101")
    await engine.set_location("dave", "Nowhere Special")

    lens = await engine.items.create_item("alice", "Camera")
    far = await engine.items.create_item("bob", "Surfboard")
    near = await engine.items.create_item("carol", "Raincoat")
    unknown = await engine.items.create_item("dave", "Mystery")
    no_location = await engine.items.create_item("erin", "Tent")

    local = await engine.matching.find_candidates(lens.id, "alice", 10)
    assert set(_ids(local)) == {near.id, unknown.id, no_location.id}

    everywhere = await engine.matching.find_candidates(lens.id, "alice", "nationwide")
    assert far.id in _ids(everywhere)


async def test_unresolvable_viewer_location_disables_radius(make_engine):
    engine = await make_engine()
    await engine.set_location("alice", "Atlantis")
    await engine.set_location("bob", "34.0,-118.2")
    lens = await engine.items.create_item("alice", "Camera")
    far = await engine.items.create_item("bob", "Surfboard")

    assert _ids(await engine.matching.find_candidates(lens.id, "alice", "10")) == [far.id]


async def test_owners_sharing_a_location_need_one_lookup(make_engine, geocoder):
    engine = await make_engine()
    geocoder.points["98101"] = Point(47.61, -122.33)
    geocoder.delay = 0.01
    await engine.set_location("alice", "47.6,-122.3")
    await engine.set_location("bob", "98101")
    await engine.set_location("carol", "98101")
    await engine.set_location("dave", "98101-0001")

    lens = await engine.items.create_item("alice", "Camera")
    for owner in ("bob", "carol", "dave"):
        await engine.items.create_item(owner, f"Item from {owner}")

    assert len(await engine.matching.find_candidates(lens.id, "alice", 10)) == 3
    assert geocoder.calls == ["98101"]


async def test_radius_filter_handles_opposite_sides_of_the_globe(make_engine):
    engine = await make_engine()
    await engine.set_location("alice", "-87.5,0")
    await engine.set_location("bob", "87.5,180")
    lens = await engine.items.create_item("alice", "Camera")
    await engine.items.create_item("bob", "Surfboard")

    assert await engine.matching.find_candidates(lens.id, "alice", 10) == []


async def test_likes_become_a_match_in_either_order(make_engine, sink):
    engine = await make_engine()
    camera = await engine.items.create_item("alice", "Camera")
    jacket = await engine.items.create_item("bob", "Jacket")

    first = await engine.matching.like_item("bob", camera.id)
    assert first.created and first.match is None
    assert not await engine.matching.is_mutual("alice", jacket.id, "bob", camera.id)

    second = await engine.matching.like_item("alice", jacket.id)
    assert second.match is not None
    assert second.match.my_item_id == camera.id
    assert second.match.their_item_id == jacket.id

    assert await engine.matching.is_mutual("alice", jacket.id, "bob", camera.id)
    assert await engine.matching.is_mutual("bob", camera.id, "alice", jacket.id)

    assert sink.kinds() == ["match_created", "match_created"]
    assert {event.recipient_id for event in sink.events} == {"alice", "bob"}


async def test_repeated_like_is_not_a_new_match(make_engine, sink):
    engine = await make_engine()
    camera = await engine.items.create_item("alice", "Camera")
    jacket = await engine.items.create_item("bob", "Jacket")
    await engine.matching.like_item("bob", camera.id)
    await engine.matching.like_item("alice", jacket.id)

    again = await engine.matching.like_item("alice", jacket.id)
    assert again.created is False
    assert len(sink.events) == 2


async def test_like_validation(make_engine):
    engine = await make_engine()
    camera = await engine.items.create_item("alice", "Camera")
    jacket = await engine.items.create_item("bob", "Jacket")

    with pytest.raises(ValidationError):
        await engine.matching.like_item("alice", camera.id)
    with pytest.raises(NotFoundError):
        await engine.matching.like_item("alice", "missing")

    await engine.blocks.block_user("bob", "alice")
    with pytest.raises(NotFoundError):
        await engine.matching.like_item("alice", jacket.id)


async def test_matches_are_derived_from_likes(make_engine):
    engine = await make_engine()
    camera = await engine.items.create_item("alice", "Camera")
    jacket = await engine.items.create_item("bob", "Jacket")
    lamp = await engine.items.create_item("carol", "Lamp")

    await engine.matching.like_item("bob", camera.id)
    await engine.matching.like_item("alice", jacket.id)
    await engine.matching.like_item("alice", lamp.id)

    matches = await engine.matching.list_matches("alice")
    assert [(m.other_user_id, m.my_item_id, m.their_item_id) for m in matches] == [
        ("bob", camera.id, jacket.id)
    ]
    assert [m.other_user_id for m in await engine.matching.list_matches("bob")] == ["alice"]

    await engine.matching.unlike_item("bob", camera.id)
    assert await engine.matching.list_matches("alice") == []
    assert _ids(await engine.matching.liked_items("alice")) == [jacket.id, lamp.id]


async def test_blocked_users_drop_out_of_matches(make_engine):
    engine = await make_engine()
    camera = await engine.items.create_item("alice", "Camera")
    jacket = await engine.items.create_item("bob", "Jacket")
    await engine.matching.like_item("bob", camera.id)
    await engine.matching.like_item("alice", jacket.id)

    await engine.blocks.block_user("bob", "alice")
    assert await engine.matching.list_matches("alice") == []


def test_parse_radius():
    assert parse_radius("nationwide") is None
    assert parse_radius("Nationwide") is None
    assert parse_radius(25) == 25.0
    assert parse_radius("10") == 10.0
    for bad in ("far", 0, -5, True, float("nan")):
        with pytest.raises(ValidationError):
            parse_radius(bad)


def test_ranges_overlap():
    assert ranges_overlap(1, 5, 5, 10)
    assert not ranges_overlap(1, 4, 5, 10)
    assert ranges_overlap(None, None, 5, 10)
    assert ranges_overlap(20, None, None, 25)
    assert not ranges_overlap(30, None, None, 25)


def test_preferences_without_declarations_always_match():
    lens = Item(id="a", owner_id="alice", name="A", category="Books")
    candidate = Item(id="b", owner_id="bob", name="B", category="Tools")
    assert preferences_compatible(lens, candidate)
