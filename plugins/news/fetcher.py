"""
News fetcher - Hacker News top stories and a few programming subreddits.
"""

import logging
from typing import Any, AsyncIterator, Dict, List

from core.infra.http import HttpClient
from core.interfaces import Fetcher
from core.models import ScrapedItem


logger = logging.getLogger(__name__)

HN_TOP_STORIES = "https://hacker-news.firebaseio.com/v0/topstories.json"
HN_ITEM = "https://hacker-news.firebaseio.com/v0/item/{}.json"
HN_LIMIT = 30

SUBREDDITS = {
    "reddit_technology": "https://www.reddit.com/r/technology/hot.json?limit=25",
    "reddit_programming": "https://www.reddit.com/r/programming/hot.json?limit=25",
    "reddit_webdev": "https://www.reddit.com/r/webdev/hot.json?limit=25",
}
SELFTEXT_LIMIT = 500


def shape_story(story: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("id", "title", "url", "score", "by", "time", "type", "descendants")
    return {k: story.get(k) for k in keys}


def shape_post(post: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": post.get("id"),
        "title": post.get("title"),
        "url": post.get("url"),
        "selftext": (post.get("selftext") or "")[:SELFTEXT_LIMIT],
        "score": post.get("score"),
        "author": post.get("author"),
        "created_utc": post.get("created_utc"),
        "num_comments": post.get("num_comments"),
        "subreddit": post.get("subreddit"),
    }


class NewsFetcher(Fetcher):
    """Items are queued under the feed name (hackernews, reddit_*) as source."""

    name = "news"
    url = HN_TOP_STORIES
    fetch_frequency = "01:00:00"

    def __init__(self, http: HttpClient, hn_limit: int = HN_LIMIT):
        super().__init__()
        self.http = http
        self.hn_limit = hn_limit

    @property
    def config(self):
        return {"feeds": ["hackernews", *SUBREDDITS]}

    async def fetch(self) -> AsyncIterator[ScrapedItem]:
        async for item in self._hackernews():
            yield item
        for feed, feed_url in SUBREDDITS.items():
            async for item in self._reddit(feed, feed_url):
                yield item

    async def _hackernews(self) -> AsyncIterator[ScrapedItem]:
        try:
            story_ids: List[int] = await self.http.get_json(HN_TOP_STORIES) or []
        except Exception as e:
            logger.error(f"HackerNews error: {e}")
            self.errors.append(f"hackernews: {e}")
            return

        count = 0
        for story_id in story_ids[: self.hn_limit]:
            try:
                story = await self.http.get_json(HN_ITEM.format(story_id))
            except Exception as e:
                # Individual stories are best effort
                logger.debug(f"Skipping HN story {story_id}: {e}")
                continue
            if story and story.get("title"):
                count += 1
                yield ScrapedItem(source="hackernews", content_type="news", raw_content=shape_story(story), priority=5)
            await self.http.pause()
        logger.info(f"HackerNews: {count} stories")

    async def _reddit(self, feed: str, feed_url: str) -> AsyncIterator[ScrapedItem]:
        try:
            data = await self.http.get_json(feed_url)
        except Exception as e:
            logger.error(f"{feed} error: {e}")
            self.errors.append(f"{feed}: {e}")
            return

        posts = ((data or {}).get("data") or {}).get("children") or []
        for post in posts:
            post_data = post.get("data") or {}
            if post_data.get("title"):
                yield ScrapedItem(source=feed, content_type="news", raw_content=shape_post(post_data), priority=4)
        logger.info(f"{feed}: {len(posts)} posts")
        await self.http.pause()
