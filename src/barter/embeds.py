"""Embed builder utilities for notification messages."""
from __future__ import annotations

from typing import Iterable

import discord

from .models import Event

DEFAULT_EMBED_COLOR = 0x2B2D31

_EVENT_TITLES = {
    "match_created": "🤝 New match found!",
    "trade_proposed": "📦 New trade request",
    "trade_accepted": "✅ Trade accepted",
    "trade_completed": "🎉 Trade completed",
    "item_removed": "🚫 Item removed",
}


def info_embed(title: str, description: str | None = None, *, color: int = DEFAULT_EMBED_COLOR) -> discord.Embed:
    embed = discord.Embed(title=title, description=description or "", color=color)
    embed.set_footer(text="Barter • trade what you have for what you want")
    return embed


def format_item_ids(item_ids: Iterable[str]) -> str:
    return ", ".join(f"`{item_id}`" for item_id in item_ids) or "no items"


def rating_summary(score: float, count: int) -> str:
    if count == 0:
        return "No reviews yet"
    return f"⭐ {score:.2f} average from {count} reviews"


def describe_event(event: Event) -> str:
    payload = event.payload
    if event.kind == "match_created":
        return (
            f"Your item `{payload.get('my_item_id')}` matched with "
            f"`{payload.get('their_item_id')}`."
        )
    if event.kind == "trade_proposed":
        return (
            f"<@{payload.get('requester_id')}> offers {format_item_ids(payload.get('requester_item_ids', ()))} "
            f"for {format_item_ids(payload.get('owner_item_ids', ()))}."
        )
    if event.kind == "trade_accepted":
        return f"Trade `{payload.get('conversation_id')}` was accepted by both sides."
    if event.kind == "trade_completed":
        days = payload.get("review_window_days", 30)
        text = (
            f"Trade `{payload.get('conversation_id')}` is complete.\n"
            f"You have {days} days to review your partner."
        )
        if payload.get("partner_rating"):
            score, count = payload["partner_rating"]
            text += f"\nPartner rating: {rating_summary(score, count)}"
        return text
    if event.kind == "item_removed":
        reason = payload.get("reason")
        suffix = f"\nReason: {reason}" if reason else ""
        return f"Your item `{payload.get('item_id')}` was removed by a moderator.{suffix}"
    return ""


def event_embed(event: Event) -> discord.Embed:
    title = _EVENT_TITLES.get(event.kind, event.kind.replace("_", " ").capitalize())
    return info_embed(title, describe_event(event))
