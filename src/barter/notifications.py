"""Fire-and-forget notification sinks."""
from __future__ import annotations

import asyncio
import logging
from typing import Set

import discord

from .embeds import event_embed
from .models import Event

_log = logging.getLogger(__name__)

MATCH_CREATED = "match_created"
TRADE_PROPOSED = "trade_proposed"
TRADE_ACCEPTED = "trade_accepted"
TRADE_COMPLETED = "trade_completed"
ITEM_REMOVED = "item_removed"


class NotificationSink:
    """Receives engine events. ``publish`` must return without waiting for delivery."""

    def publish(self, event: Event) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    def publish(self, event: Event) -> None:
        _log.info("Event %s for %s: %s", event.kind, event.recipient_id, event.payload)


class DiscordNotificationSink(NotificationSink):
    """Delivers events as Discord direct messages.

    Recipient ids are expected to be Discord user snowflakes. The client only
    needs to be logged in; a gateway connection is not required to send DMs.
    """

    def __init__(self, client: discord.Client, *, owns_client: bool = False) -> None:
        self.client = client
        self._owns_client = owns_client
        self._tasks: Set[asyncio.Task] = set()

    def publish(self, event: Event) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event: Event) -> None:
        try:
            user_id = int(event.recipient_id)
        except ValueError:
            _log.warning("Cannot deliver %s to non-Discord recipient %s", event.kind, event.recipient_id)
            return

        try:
            user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
            await user.send(embed=event_embed(event))
        except discord.HTTPException:
            _log.warning("Failed to send %s notification to %s", event.kind, user_id)

    async def drain(self) -> None:
        """Wait for in-flight deliveries; used on shutdown."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._owns_client:
            await self.client.close()


def publish_safely(sink: NotificationSink, event: Event) -> None:
    """Hand ``event`` to ``sink`` without letting a sink failure fail the caller."""

    try:
        sink.publish(event)
    except Exception:
        _log.exception("Notification sink failed for %s", event.kind)
