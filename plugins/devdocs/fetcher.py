"""
DevDocs fetcher - queues index entries of selected documentation sets.
"""

import logging
from typing import AsyncIterator, List, Optional

from core.infra.http import HttpClient
from core.interfaces import Fetcher
from core.models import ScrapedItem


logger = logging.getLogger(__name__)


class DevDocsFetcher(Fetcher):
    """Reads ``/docs/<slug>/index.json`` for each configured doc set."""

    name = "devdocs"
    url = "https://devdocs.io"
    fetch_frequency = "06:00:00"

    DOCS = [
        "react",
        "typescript",
        "javascript",
        "node",
        "nextjs~14",
        "tailwindcss",
        "postgresql",
        "git",
        "html",
        "css",
        "dom",
        "http",
        "python~3.12",
        "bash",
    ]
    ENTRIES_PER_DOC = 100
    PRIORITY = 8

    def __init__(self, http: HttpClient, docs: Optional[List[str]] = None):
        super().__init__()
        self.http = http
        self.docs = docs or list(self.DOCS)

    @property
    def config(self):
        return {"docs": self.docs}

    async def fetch(self) -> AsyncIterator[ScrapedItem]:
        for slug in self.docs:
            try:
                index = await self.http.get_json(f"{self.url}/docs/{slug}/index.json")
            except Exception as e:
                logger.error(f"Failed to fetch DevDocs {slug}: {e}")
                self.errors.append(f"{slug}: {e}")
                continue

            entries = (index or {}).get("entries") or []
            logger.info(f"DevDocs {slug}: {len(entries)} entries, queueing {min(len(entries), self.ENTRIES_PER_DOC)}")
            for entry in entries[: self.ENTRIES_PER_DOC]:
                yield ScrapedItem(
                    source=self.name,
                    content_type="documentation",
                    raw_content={
                        "doc": slug,
                        "title": entry.get("name"),
                        "type": entry.get("type"),
                        "path": entry.get("path"),
                        "url": f"{self.url}/{slug}/{entry.get('path')}",
                    },
                    priority=self.PRIORITY,
                )
            await self.http.pause()
