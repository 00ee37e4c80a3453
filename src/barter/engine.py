"""Wiring of the engine services around one data store."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord

from .blocking import BlockService
from .config import Settings, load_settings
from .database import Database
from .geo import BigDataCloudGeocoder, GeoResolver
from .items import ItemService
from .matching import MatchingEngine
from .notifications import DiscordNotificationSink, LoggingNotificationSink, NotificationSink
from .reviews import ReviewWindow
from .trades import TradeService
from .visibility import VisibilityFilter

_log = logging.getLogger(__name__)


class TradeEngine:
    """Entry point for callers: one attribute per component."""

    def __init__(
        self,
        db: Database,
        geo: GeoResolver,
        sink: Optional[NotificationSink] = None,
        *,
        review_window_days: int = 30,
        review_comment_limit: int = 140,
    ) -> None:
        self.db = db
        self.geo = geo
        self.sink = sink or LoggingNotificationSink()
        self.visibility = VisibilityFilter(db)
        self.blocks = BlockService(db)
        self.items = ItemService(db, self.sink)
        self.matching = MatchingEngine(db, self.visibility, geo, self.sink)
        self.trades = TradeService(
            db, self.visibility, self.sink, review_window_days=review_window_days
        )
        self.reviews = ReviewWindow(
            db, window_days=review_window_days, comment_limit=review_comment_limit
        )

    @classmethod
    async def open(
        cls,
        settings: Settings,
        *,
        sink: Optional[NotificationSink] = None,
        geocoder=None,
    ) -> "TradeEngine":
        db = Database(settings.database_path)
        await db.setup()
        if sink is None and settings.discord_token:
            sink = await cls._discord_sink(settings.discord_token)
        provider = geocoder or BigDataCloudGeocoder(
            settings.geocoder_base_url,
            country_code=settings.geocoder_country,
            request_timeout=settings.geocoder_timeout,
        )
        geo = GeoResolver(provider, timeout=settings.geocoder_timeout)
        return cls(
            db,
            geo,
            sink,
            review_window_days=settings.review_window_days,
            review_comment_limit=settings.review_comment_limit,
        )

    @staticmethod
    async def _discord_sink(token: str) -> DiscordNotificationSink:
        client = discord.Client(intents=discord.Intents.default())
        await client.login(token)
        _log.info("Discord notifications enabled")
        return DiscordNotificationSink(client, owns_client=True)

    async def set_location(self, user_id: str, location: str) -> None:
        await self.db.set_location(user_id, location)

    async def close(self) -> None:
        await self.sink.close()
        await self.geo.close()


def init_db() -> None:
    """Create the database schema at the configured path."""

    logging.basicConfig(level=logging.INFO)
    settings = load_settings()
    asyncio.run(Database(settings.database_path).setup())
    _log.info("Database ready at %s", settings.database_path)


if __name__ == "__main__":
    init_db()
