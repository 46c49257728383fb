"""
Durable priority queue of unclassified items.

Drain order is priority descending, then age ascending; insertion order
breaks ties between items created in the same instant. Each drained item is
claimed with a conditional update before it is handed out, so two concurrent
drains never process the same item while its lease is live.
"""

import logging
import os
import socket
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from .dedup import Deduplicator, fingerprint, normalize
from .infra.db import Database, new_id
from .models import RawItem, utcnow


logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5
DEFAULT_BATCH_SIZE = 50
DEFAULT_LEASE_SECONDS = 900


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{new_id()[:8]}"


class LearningQueue:
    """Priority queue backed by the learning_queue relation."""

    def __init__(
        self,
        db: Database,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.lease_seconds = lease_seconds
        self.clock = clock
        self.dedup = Deduplicator(db, table="learning_queue")

    async def enqueue(
        self,
        source: str,
        content_type: str,
        raw_content: Any,
        priority: int = DEFAULT_PRIORITY,
        dedupe: bool = False,
        processed: bool = False,
        learning_outcome: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append an item and return its id.

        With ``dedupe`` an exact-duplicate of any queued row raises ConflictError.
        """
        text = normalize(raw_content)
        digest = await self.dedup.ensure_unique(text) if dedupe else fingerprint(text)
        item_id = new_id()
        now = self.clock()
        await self.db.insert("learning_queue", {
            "id": item_id,
            "source": source,
            "content_type": content_type,
            "raw_content": text,
            "content_hash": digest,
            "priority": int(priority),
            "processed": processed,
            "processed_at": now if processed else None,
            "learning_outcome": learning_outcome or {},
            "created_at": now,
        })
        return item_id

    async def drain(self, batch_size: int = DEFAULT_BATCH_SIZE, worker_id: Optional[str] = None) -> List[RawItem]:
        """Claim and return up to ``batch_size`` unprocessed items in drain order."""
        worker_id = worker_id or default_worker_id()
        now = self.clock()
        lease_cutoff = now - timedelta(seconds=self.lease_seconds)

        rows = await self.db.fetch_all(
            """
            SELECT * FROM learning_queue
            WHERE processed = 0 AND (leased_at IS NULL OR leased_at < ?)
            ORDER BY priority DESC, created_at ASC, rowid ASC
            LIMIT ?
            """,
            (lease_cutoff, batch_size),
        )

        claimed: List[RawItem] = []
        for row in rows:
            won = await self.db.write(
                """
                UPDATE learning_queue SET leased_at = ?, leased_by = ?
                WHERE id = ? AND processed = 0 AND (leased_at IS NULL OR leased_at < ?)
                """,
                (now, worker_id, row["id"], lease_cutoff),
            )
            if won != 1:
                logger.debug(f"Item {row['id']} claimed by another worker")
                continue
            item = RawItem.model_validate(dict(row))
            item.leased_at = now
            item.leased_by = worker_id
            claimed.append(item)

        logger.info(f"Drained {len(claimed)} of {len(rows)} candidate items (worker {worker_id})")
        return claimed

    async def mark_processed(self, item_id: str, outcome: Dict[str, Any]) -> None:
        await self.db.write(
            """
            UPDATE learning_queue
            SET processed = 1, processed_at = ?, learning_outcome = ?, leased_at = NULL, leased_by = NULL
            WHERE id = ?
            """,
            (self.clock(), outcome, item_id),
        )

    async def mark_failed(self, item_id: str, error: str) -> None:
        """Record a failed attempt; the item stays in the backlog."""
        await self.db.write(
            """
            UPDATE learning_queue
            SET learning_outcome = ?, leased_at = NULL, leased_by = NULL
            WHERE id = ?
            """,
            ({"error": error, "failed_at": self.clock().isoformat()}, item_id),
        )

    async def release(self, item_ids: List[str]) -> None:
        """Drop leases on claimed items a run will not get to."""
        for item_id in item_ids:
            await self.db.write(
                "UPDATE learning_queue SET leased_at = NULL, leased_by = NULL WHERE id = ? AND processed = 0",
                (item_id,),
            )

    async def get(self, item_id: str) -> Optional[RawItem]:
        row = await self.db.fetch_one("SELECT * FROM learning_queue WHERE id = ?", (item_id,))
        return RawItem.model_validate(dict(row)) if row else None

    async def backlog_count(self) -> int:
        return await self.db.fetch_value("SELECT COUNT(*) FROM learning_queue WHERE processed = 0")

    async def processed_since(self, since) -> int:
        return await self.db.fetch_value(
            "SELECT COUNT(*) FROM learning_queue WHERE processed = 1 AND processed_at >= ?",
            (since,),
        )

    async def retention_sweep(self, max_age_days: int = 7) -> int:
        """Delete processed items older than the cutoff; returns rows deleted."""
        cutoff = self.clock() - timedelta(days=max_age_days)
        deleted = await self.db.write(
            "DELETE FROM learning_queue WHERE processed = 1 AND processed_at < ?",
            (cutoff,),
        )
        if deleted:
            logger.info(f"Retention sweep deleted {deleted} processed items older than {max_age_days} days")
        return deleted
