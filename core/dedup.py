"""
Normalization and exact-duplicate detection.

Duplicates are exact text matches only. Lookups go through the indexed
``content_hash`` column instead of scanning full text; because the hash is a
SHA-256 of the normalized text, a hash hit is an exact-text hit.
"""

import hashlib
import json
import logging
from typing import Any, Optional

from .errors import ConflictError
from .infra.db import Database


logger = logging.getLogger(__name__)

# Relations that carry a content_hash column
_HASHED_TABLES = ("knowledge_base", "learning_queue")


def normalize(content: Any) -> str:
    """Canonical text form: strings trimmed, structures serialized, rest stringified."""
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, (dict, list, tuple)):
        return json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(content)


def fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Deduplicator:
    """Checks normalized text against one relation before insertion."""

    def __init__(self, db: Database, table: str = "knowledge_base"):
        if table not in _HASHED_TABLES:
            raise ValueError(f"Table {table} has no content_hash column")
        self.db = db
        self.table = table

    async def find_existing(self, text: str) -> Optional[str]:
        """Return the id of a row whose content is exactly ``text``."""
        row = await self.db.fetch_one(
            f"SELECT id FROM {self.table} WHERE content_hash = ? LIMIT 1",
            (fingerprint(text),),
        )
        return row["id"] if row else None

    async def is_duplicate(self, text: str) -> bool:
        return await self.find_existing(text) is not None

    async def ensure_unique(self, text: str) -> str:
        """Return the fingerprint, or raise ConflictError naming the existing row."""
        digest = fingerprint(text)
        existing_id = await self.find_existing(text)
        if existing_id is not None:
            logger.info(f"Duplicate content in {self.table}: {digest[:12]} (existing {existing_id})")
            raise ConflictError("Duplicate content detected", existing_id=existing_id, content_hash=digest)
        return digest
