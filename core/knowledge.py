"""
Knowledge store keyed by unique topic, plus the side cache for content that
is kept but not materialized as knowledge (news).
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .infra.db import Database, new_id
from .models import KnowledgeEntry, utcnow


logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8


class KnowledgeStore:
    """Canonical record of derived facts."""

    def __init__(self, db: Database, clock: Callable = utcnow):
        self.db = db
        self.clock = clock

    async def upsert(self, entry: KnowledgeEntry) -> str:
        """Write by topic; an existing topic has every field overwritten.

        Returns the id of the row holding the topic.
        """
        now = self.clock()
        confidence = entry.confidence_score if entry.confidence_score is not None else DEFAULT_CONFIDENCE
        await self.db.upsert(
            "knowledge_base",
            {
                "id": entry.id or new_id(),
                "category": entry.category,
                "topic": entry.topic,
                "question": entry.question,
                "answer": entry.answer,
                "short_answer": entry.short_answer,
                "source": entry.source,
                "source_url": entry.source_url,
                "content_hash": entry.content_hash,
                "confidence_score": confidence,
                "keywords": list(entry.keywords),
                "is_active": entry.is_active,
                "created_at": entry.created_at or now,
                "updated_at": now,
            },
            pk_columns=["topic"],
            keep_columns=["id", "created_at"],
        )
        row_id = await self.db.fetch_value("SELECT id FROM knowledge_base WHERE topic = ?", (entry.topic,))
        logger.debug(f"Upserted knowledge topic {entry.topic!r} ({row_id})")
        return row_id

    async def get(self, entry_id: str) -> Optional[KnowledgeEntry]:
        row = await self.db.fetch_one("SELECT * FROM knowledge_base WHERE id = ?", (entry_id,))
        return KnowledgeEntry.model_validate(dict(row)) if row else None

    async def get_by_topic(self, topic: str) -> Optional[KnowledgeEntry]:
        row = await self.db.fetch_one("SELECT * FROM knowledge_base WHERE topic = ?", (topic,))
        return KnowledgeEntry.model_validate(dict(row)) if row else None

    async def exists(self, entry_id: str) -> bool:
        return await self.db.fetch_value("SELECT 1 FROM knowledge_base WHERE id = ?", (entry_id,)) is not None

    async def deactivate(self, entry_id: str) -> bool:
        """The only removal path: entries are hidden, never deleted."""
        changed = await self.db.write(
            "UPDATE knowledge_base SET is_active = 0, updated_at = ? WHERE id = ?",
            (self.clock(), entry_id),
        )
        return changed == 1

    async def count(self, since=None) -> int:
        if since is None:
            return await self.db.fetch_value("SELECT COUNT(*) FROM knowledge_base")
        return await self.db.fetch_value(
            "SELECT COUNT(*) FROM knowledge_base WHERE created_at >= ?", (since,)
        )

    async def count_by_category(self) -> Dict[str, int]:
        rows = await self.db.fetch_all(
            "SELECT category, COUNT(*) AS n FROM knowledge_base GROUP BY category ORDER BY category"
        )
        return {row["category"]: row["n"] for row in rows}


class ExternalDataCache:
    """Side cache for non-knowledge content, one row per (source, type, key)."""

    def __init__(self, db: Database, clock: Callable = utcnow):
        self.db = db
        self.clock = clock

    async def put(self, source: str, data_type: str, item_key: str, content: Dict[str, Any]) -> None:
        await self.db.upsert(
            "external_data",
            {
                "source": source,
                "data_type": data_type,
                "item_key": item_key,
                "content": content,
                "fetched_at": self.clock(),
            },
            pk_columns=["source", "data_type", "item_key"],
        )

    async def list(self, source: str, data_type: str) -> List[Dict[str, Any]]:
        rows = await self.db.fetch_all(
            "SELECT * FROM external_data WHERE source = ? AND data_type = ? ORDER BY fetched_at DESC",
            (source, data_type),
        )
        return [dict(r) for r in rows]
