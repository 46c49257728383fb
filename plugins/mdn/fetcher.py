"""
MDN fetcher - queues child pages of reference sections, or a section
placeholder when the section has no JSON index.
"""

import logging
from typing import AsyncIterator, List, Optional

import aiohttp

from core.infra.http import HttpClient
from core.interfaces import Fetcher
from core.models import ScrapedItem


logger = logging.getLogger(__name__)


class MdnFetcher(Fetcher):
    name = "mdn"
    url = "https://developer.mozilla.org"
    fetch_frequency = "06:00:00"

    SECTIONS = [
        "/en-US/docs/Web/JavaScript/Reference",
        "/en-US/docs/Web/CSS/Reference",
        "/en-US/docs/Web/HTML/Reference",
        "/en-US/docs/Web/API",
        "/en-US/docs/Web/HTTP",
        "/en-US/docs/Web/Security",
        "/en-US/docs/Web/Accessibility",
    ]
    CHILDREN_PER_SECTION = 50

    def __init__(self, http: HttpClient, sections: Optional[List[str]] = None):
        super().__init__()
        self.http = http
        self.sections = sections or list(self.SECTIONS)

    @property
    def config(self):
        return {"sections": self.sections}

    async def fetch(self) -> AsyncIterator[ScrapedItem]:
        for section in self.sections:
            try:
                data = await self.http.get_json(f"{self.url}{section}/index.json")
            except aiohttp.ClientResponseError as e:
                logger.info(f"MDN section {section} has no index.json (HTTP {e.status}), queueing placeholder")
                yield ScrapedItem(
                    source=self.name,
                    content_type="documentation_section",
                    raw_content={"section": section, "url": f"{self.url}{section}", "needs_deep_scrape": True},
                    priority=7,
                )
                continue
            except Exception as e:
                logger.error(f"Error scraping MDN {section}: {e}")
                self.errors.append(f"{section}: {e}")
                continue

            children = ((data or {}).get("doc") or {}).get("children") or []
            for child in children[: self.CHILDREN_PER_SECTION]:
                yield ScrapedItem(
                    source=self.name,
                    content_type="documentation",
                    raw_content={
                        "section": section,
                        "title": child.get("title") or child.get("slug"),
                        "slug": child.get("slug"),
                        "url": f"{self.url}{section}/{child.get('slug')}",
                        "summary": child.get("summary") or "",
                    },
                    priority=8,
                )
            logger.info(f"MDN section {section}: {min(len(children), self.CHILDREN_PER_SECTION)} entries")
            await self.http.pause()
