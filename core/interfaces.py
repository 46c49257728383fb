"""
Core interfaces for connector pipelines.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List

from .models import ScrapedItem


class Transform(ABC):
    """Universal transform interface for pipeline stages.

    Any stage in a scrape chain implements this interface, which is what
    allows a Fetcher to be chained into one or more Sinks.
    """

    @abstractmethod
    def __call__(self, items: AsyncIterator[Any]) -> AsyncIterator[Any]:
        """Transform an async iterator of items to another async iterator."""
        ...


class Fetcher(Transform):
    """Base class for connectors.

    Fetchers ignore their input and yield ScrapedItems. Recoverable
    per-section failures are appended to ``errors`` instead of being raised,
    so one bad section does not end the run.
    """

    name: str = ""
    source_type: str = "scrape"
    url: str = ""
    fetch_frequency: str = "01:00:00"

    def __init__(self) -> None:
        self.errors: List[str] = []

    @property
    def config(self) -> Dict[str, Any]:
        """Connector settings stored on the source record."""
        return {}

    @abstractmethod
    def fetch(self) -> AsyncIterator[ScrapedItem]:
        """Fetch and shape items."""
        ...

    async def __call__(self, items: AsyncIterator[Any]) -> AsyncIterator[ScrapedItem]:
        """Transform interface: ignore input stream and yield fetched items."""
        async for _ in items:
            async for scraped in self.fetch():
                yield scraped
            break  # Only one input item triggers fetching


class Sink(Transform):
    """Base class for sinks: consume items and pass them through unchanged."""

    name: str = ""

    @abstractmethod
    async def handle(self, item: Any) -> None:
        """Handle an item."""
        ...

    async def __call__(self, items: AsyncIterator[Any]) -> AsyncIterator[Any]:
        async for item in items:
            await self.handle(item)
            yield item
