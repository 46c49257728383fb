"""
Queue sink: puts scraped items into the learning queue.
"""

import logging

from core.errors import ConflictError
from core.interfaces import Sink
from core.learning_queue import LearningQueue
from core.models import ScrapedItem


logger = logging.getLogger(__name__)


class QueueSink(Sink):
    """Enqueues each ScrapedItem, skipping exact duplicates already queued."""

    name = "QueueSink"

    def __init__(self, queue: LearningQueue):
        self.queue = queue
        self.queued = 0
        self.duplicates = 0

    async def handle(self, item: ScrapedItem) -> None:
        try:
            await self.queue.enqueue(
                item.source,
                item.content_type,
                item.raw_content,
                priority=item.priority,
                dedupe=True,
            )
        except ConflictError as e:
            self.duplicates += 1
            logger.debug(f"Skipping duplicate {item.content_type} from {item.source} (existing {e.existing_id})")
            return
        self.queued += 1
