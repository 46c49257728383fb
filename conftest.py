"""Shared fixtures: a temporary store, a controllable clock and fake connectors."""

from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List

import pytest

from core.config import Settings
from core.infra.db import Database
from core.interfaces import Fetcher
from core.models import ScrapedItem
from core.pipeline import LearningPipeline


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class StaticFetcher(Fetcher):
    name = "static"
    url = "https://static.example"
    fetch_frequency = "01:00:00"

    items: List[ScrapedItem] = [
        ScrapedItem(source="static", content_type="documentation",
                    raw_content={"doc": "react", "title": "useState", "type": "hook", "url": "https://x/useState"},
                    priority=8),
        ScrapedItem(source="static", content_type="news",
                    raw_content={"id": 1, "title": "Release notes"}, priority=4),
    ]

    def __init__(self, http):
        super().__init__()
        self.http = http

    async def fetch(self) -> AsyncIterator[ScrapedItem]:
        for item in self.items:
            yield item


class FlakyFetcher(StaticFetcher):
    """Yields one item and records three section errors."""

    name = "flaky"

    async def fetch(self) -> AsyncIterator[ScrapedItem]:
        for section in ("a", "b", "c"):
            self.errors.append(f"{section}: HTTP 503")
        yield self.items[0]


class BrokenFetcher(StaticFetcher):
    name = "broken"

    async def fetch(self) -> AsyncIterator[ScrapedItem]:
        raise RuntimeError("connection reset")
        yield  # pragma: no cover


CONNECTORS = {cls.name: cls for cls in (StaticFetcher, FlakyFetcher, BrokenFetcher)}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_path=str(tmp_path / "learning.db"),
        cron_secret="s3cret",
        scrape_pause_s=0,
    )


@pytest.fixture
async def db(settings):
    database = Database(settings.database_path)
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
async def pipeline(settings, db, clock):
    yield LearningPipeline(settings, db=db, connectors=dict(CONNECTORS), clock=clock)
