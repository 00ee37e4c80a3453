from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from barter.database import Database
from barter.engine import TradeEngine
from barter.errors import UpstreamUnavailable
from barter.geo import GeoResolver
from barter.models import Point
from barter.notifications import NotificationSink


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def kinds(self):
        return [event.kind for event in self.events]


class FakeGeocoder:
    """Geocoding provider stub keyed by normalized location text."""

    def __init__(self, points=None, *, delay: float = 0.0):
        self.points = dict(points or {})
        self.delay = delay
        self.calls = []

    async def lookup(self, location: str) -> Point:
        self.calls.append(location)
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            return self.points[location]
        except KeyError:
            raise UpstreamUnavailable(f"no coordinates for {location}") from None


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def make_engine(tmp_path: Path, sink, geocoder):
    async def factory() -> TradeEngine:
        db = Database(tmp_path / "test.db")
        await db.setup()
        return TradeEngine(db, GeoResolver(geocoder, timeout=1.0), sink)

    return factory
