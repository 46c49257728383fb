"""
Daily report over the prior 24 hours of learning, source, healing and activity data.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .activity import ActivityLog
from .knowledge import KnowledgeStore
from .learning_queue import LearningQueue
from .models import DataSourceRecord, utcnow
from .sources import SourceRegistry


logger = logging.getLogger(__name__)

REPORT_WINDOW = timedelta(hours=24)
DEGRADED_SOURCE_MAX_ERRORS = 3


class LearningStats(BaseModel):
    new_knowledge_items: int = 0
    queue_items_processed: int = 0
    queue_items_pending: int = 0
    total_knowledge_items: int = 0
    knowledge_by_category: Dict[str, int] = Field(default_factory=dict)


class SourceStats(BaseModel):
    total: int = 0
    healthy: int = 0
    degraded: int = 0
    unhealthy: int = 0
    details: List[Dict[str, Any]] = Field(default_factory=list)


class HealingStats(BaseModel):
    issues_detected: int = 0
    auto_healed: int = 0
    requiring_human: int = 0
    heal_rate: str = "100%"


class ActivityCounts(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0


class DailyReport(BaseModel):
    generated_at: datetime
    period_start: datetime
    period_end: datetime
    learning: LearningStats
    data_sources: SourceStats
    self_healing: HealingStats
    activity: Dict[str, ActivityCounts] = Field(default_factory=dict)
    system_status: str


def source_bucket(source: DataSourceRecord) -> str:
    if not source.is_active or source.error_count > DEGRADED_SOURCE_MAX_ERRORS:
        return "unhealthy"
    if source.error_count > 0:
        return "degraded"
    return "healthy"


def overall_status(degraded: int, unhealthy: int, human_required: int) -> str:
    if unhealthy > 0 or human_required > 2:
        return "critical"
    if degraded > 2 or human_required > 0:
        return "degraded"
    if degraded > 0:
        return "good"
    return "excellent"


class DailyReporter:
    def __init__(
        self,
        knowledge: KnowledgeStore,
        queue: LearningQueue,
        sources: SourceRegistry,
        activity: ActivityLog,
        clock: Callable = utcnow,
    ):
        self.knowledge = knowledge
        self.queue = queue
        self.sources = sources
        self.activity = activity
        self.clock = clock

    async def build(self) -> DailyReport:
        """Aggregate the window; read-only."""
        now = self.clock()
        since = now - REPORT_WINDOW

        learning = LearningStats(
            new_knowledge_items=await self.knowledge.count(since=since),
            queue_items_processed=await self.queue.processed_since(since),
            queue_items_pending=await self.queue.backlog_count(),
            total_knowledge_items=await self.knowledge.count(),
            knowledge_by_category=await self.knowledge.count_by_category(),
        )

        records = await self.sources.list()
        sources = SourceStats(total=len(records))
        for record in records:
            bucket = source_bucket(record)
            setattr(sources, bucket, getattr(sources, bucket) + 1)
            sources.details.append({
                "name": record.name,
                "active": record.is_active,
                "last_fetch": record.last_fetch.isoformat() if record.last_fetch else None,
                "error_count": record.error_count,
                "last_error": record.last_error,
            })

        issues = await self.activity.issues_since(since)
        healed = sum(1 for i in issues if i.auto_healed)
        human = sum(1 for i in issues if i.requires_human and i.resolved_at is None)
        healing = HealingStats(
            issues_detected=len(issues),
            auto_healed=healed,
            requiring_human=human,
            heal_rate=f"{healed / len(issues) * 100:.1f}%" if issues else "100%",
        )

        activity: Dict[str, ActivityCounts] = {}
        for entry in await self.activity.entries(since=since):
            counts = activity.setdefault(entry.action_type, ActivityCounts())
            counts.total += 1
            if entry.success:
                counts.success += 1
            else:
                counts.failed += 1

        return DailyReport(
            generated_at=self.clock(),
            period_start=since,
            period_end=now,
            learning=learning,
            data_sources=sources,
            self_healing=healing,
            activity=activity,
            system_status=overall_status(sources.degraded, sources.unhealthy, human),
        )

    async def generate(self, notify: Optional[Callable] = None) -> DailyReport:
        """Build, persist as an activity entry, then hand to ``notify`` if given."""
        started = time.monotonic()
        logger.info("Generating daily report")
        report = await self.build()

        await self.activity.record(
            "daily_report",
            metadata=report.model_dump(mode="json"),
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        if notify is not None:
            try:
                await notify(report)
            except Exception as e:
                logger.error(f"Failed to deliver daily report: {e}")

        logger.info(f"Daily report generated: status={report.system_status}")
        return report
