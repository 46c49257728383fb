"""
Data-source registry: fetch and error bookkeeping for every connector.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .infra.db import Database, new_id
from .models import DataSourceRecord, utcnow


logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY_HOURS = 1.0


def parse_frequency(freq: Optional[str]) -> float:
    """Hours in an interval string like "06:00:00"; 1 hour when unusable."""
    if not freq:
        return DEFAULT_FREQUENCY_HOURS
    parts = freq.split(":")
    if len(parts) < 2:
        return DEFAULT_FREQUENCY_HOURS
    try:
        hours = int(parts[0]) + int(parts[1]) / 60
    except ValueError:
        return DEFAULT_FREQUENCY_HOURS
    return hours if hours > 0 else DEFAULT_FREQUENCY_HOURS


class SourceRegistry:
    def __init__(self, db: Database, clock: Callable = utcnow):
        self.db = db
        self.clock = clock

    async def register(
        self,
        name: str,
        source_type: str = "scrape",
        url: Optional[str] = None,
        fetch_frequency: str = "01:00:00",
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Create or refresh a source at the start of a fetch run."""
        await self.db.upsert(
            "data_sources",
            {
                "id": new_id(),
                "name": name,
                "source_type": source_type,
                "url": url,
                "fetch_frequency": fetch_frequency,
                "is_active": True,
                "last_fetch": self.clock(),
                "config": config or {},
            },
            pk_columns=["name"],
            keep_columns=["id"],
        )

    async def get(self, name: str) -> Optional[DataSourceRecord]:
        row = await self.db.fetch_one("SELECT * FROM data_sources WHERE name = ?", (name,))
        return DataSourceRecord.model_validate(dict(row)) if row else None

    async def list(self, active_only: bool = False) -> List[DataSourceRecord]:
        sql = "SELECT * FROM data_sources"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = await self.db.fetch_all(sql + " ORDER BY name")
        return [DataSourceRecord.model_validate(dict(r)) for r in rows]

    async def record_run(self, name: str, scraped: int, errors: List[str], duration_ms: int) -> None:
        """Store the outcome of a completed run; the error count is the run's own."""
        source = await self.get(name)
        config = dict(source.config) if source else {}
        config.update({"last_scrape_count": scraped, "last_scrape_duration_ms": duration_ms})
        await self.db.write(
            """
            UPDATE data_sources
            SET last_fetch = ?, error_count = ?, last_error = ?, config = ?
            WHERE name = ?
            """,
            (self.clock(), len(errors), errors[-1] if errors else None, config, name),
        )

    async def record_fatal(self, name: str, error: str) -> None:
        await self.db.write(
            "UPDATE data_sources SET error_count = error_count + 1, last_error = ? WHERE name = ?",
            (error, name),
        )

    async def reset_errors(self, name: str, schedule_now: bool = False) -> bool:
        """Zero the error counter of a source by name; returns whether it exists."""
        if schedule_now:
            changed = await self.db.write(
                "UPDATE data_sources SET error_count = 0, last_error = NULL, next_fetch = ? WHERE name = ?",
                (self.clock(), name),
            )
        else:
            changed = await self.db.write(
                "UPDATE data_sources SET error_count = 0, last_error = NULL WHERE name = ?",
                (name,),
            )
        return changed == 1

    async def erroring(self, threshold: int) -> List[DataSourceRecord]:
        rows = await self.db.fetch_all(
            "SELECT * FROM data_sources WHERE is_active = 1 AND error_count > ? ORDER BY name",
            (threshold,),
        )
        return [DataSourceRecord.model_validate(dict(r)) for r in rows]
